# Overview: Service-layer operations for the catalog and offering search; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy.orm import joinedload

from ..extensions import db
from ..errors import NotFoundError
from ..location import haversine_km
from ..models import CatalogItem, Provider, ProviderOffering
from ..models.catalog import SERVICE_KINDS, VERIFICATION_VERIFIED
from ..validation import ValidationError


ITEM_FIELDS = (
    "name", "kind", "category", "description", "prescription_required",
    "strength", "dosage", "form", "prep_instructions",
)
SORT_DISTANCE = "distance"
SORT_PRICE = "price"


def get_item(item_id: int) -> CatalogItem:
    item = db.session.get(CatalogItem, item_id)
    if not item:
        raise NotFoundError("Catalog item not found", {"item_id": item_id})
    return item


def list_items(kind: str | None = None, query: str | None = None, limit: int = 50, offset: int = 0) -> list[CatalogItem]:
    q = db.session.query(CatalogItem)
    if kind:
        q = q.filter_by(kind=kind)
    if query:
        q = q.filter(CatalogItem.name.ilike(f"%{query.strip()}%"))
    return q.order_by(CatalogItem.name, CatalogItem.id).offset(offset).limit(limit).all()


def _check_kind(kind: str | None) -> None:
    if kind is not None and kind not in SERVICE_KINDS:
        raise ValidationError("Invalid kind", {"kind": f"must be one of: {', '.join(SERVICE_KINDS)}"})


def create_item(data: dict) -> CatalogItem:
    _check_kind(data.get("kind"))
    item = CatalogItem(**{field: data.get(field) for field in ITEM_FIELDS if data.get(field) is not None})
    db.session.add(item)
    db.session.commit()
    return item


def update_item(item_id: int, patch: dict) -> CatalogItem:
    item = get_item(item_id)
    _check_kind(patch.get("kind"))
    for field in ITEM_FIELDS:
        if patch.get(field) is not None:
            setattr(item, field, patch[field])
    db.session.commit()
    return item


def search_offerings(
    query: str | None = None,
    kind: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    radius_km: float | None = None,
    sort: str = SORT_PRICE,
    limit: int = 50,
) -> list[dict]:
    """
    Available offerings from verified, active providers.

    With a reference point, each result carries distance_km; radius_km
    drops anything farther, and sort="distance" orders nearest first.
    """
    q = (
        db.session.query(ProviderOffering)
        .join(Provider, Provider.id == ProviderOffering.provider_id)
        .join(CatalogItem, CatalogItem.id == ProviderOffering.item_id)
        .options(joinedload(ProviderOffering.provider), joinedload(ProviderOffering.item))
        .filter(
            Provider.verification_status == VERIFICATION_VERIFIED,
            Provider.is_active.is_(True),
            ProviderOffering.available.is_(True),
            db.or_(ProviderOffering.stock.is_(None), ProviderOffering.stock > 0),
        )
    )
    if kind:
        q = q.filter(CatalogItem.kind == kind)
    if query:
        q = q.filter(CatalogItem.name.ilike(f"%{query.strip()}%"))

    has_point = latitude is not None and longitude is not None
    results = []
    for offering in q.all():
        provider = offering.provider
        distance = None
        if has_point and provider.latitude is not None and provider.longitude is not None:
            distance = round(haversine_km(latitude, longitude, provider.latitude, provider.longitude), 2)
            if radius_km is not None and distance > radius_km:
                continue
        elif has_point and radius_km is not None:
            continue
        results.append({
            "item": offering.item.to_dict(),
            "provider": provider.summary_dict(),
            "price_kobo": offering.price_kobo,
            "stock": offering.stock,
            "distance_km": distance,
        })

    if sort == SORT_DISTANCE and has_point:
        results.sort(key=lambda r: (r["distance_km"] is None, r["distance_km"] or 0, r["price_kobo"]))
    else:
        results.sort(key=lambda r: (r["price_kobo"], r["distance_km"] or 0))
    return results[:limit]
