"""
Tolerance configuration provider.
Resolves the per-tenant tolerance bands, creating the default row on first use.
"""

from typing import Any, Dict

from three_way_match.config import get_config
from three_way_match.schemas.match import ToleranceConfig
from three_way_match.storage.base import ConfigStore
from three_way_match.utils.logging import setup_logging


logger = setup_logging(__name__)
config = get_config()


def default_tolerances() -> Dict[str, Any]:
    return {
        "quantity_tolerance_pct": config.DEFAULT_QUANTITY_TOLERANCE_PCT,
        "price_tolerance_pct": config.DEFAULT_PRICE_TOLERANCE_PCT,
        "allow_payment_without_match": config.DEFAULT_ALLOW_PAYMENT_WITHOUT_MATCH,
    }


def _sanitize_percentage(tenant_id: int, name: str, value: Any, default: float) -> float:
    """Return value as a percentage in [0, 100), or the default if it is malformed."""
    try:
        pct = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Tenant {tenant_id}: malformed {name}={value!r}, using default {default}")
        return default

    if not 0 <= pct < 100:
        logger.warning(f"Tenant {tenant_id}: {name}={pct} outside [0, 100), using default {default}")
        return default
    return pct


def _sanitize_flag(tenant_id: int, name: str, value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "0", "1"):
        return value.strip().lower() in ("true", "1")
    logger.warning(f"Tenant {tenant_id}: malformed {name}={value!r}, using default {default}")
    return default


def resolve_tolerance_config(config_store: ConfigStore, tenant_id: int) -> ToleranceConfig:
    """
    Get the tenant's tolerance configuration, creating the defaults on first use.

    Storage failures propagate. Stored values that are malformed or out of
    range fall back to the defaults instead of failing the run.

    Args:
        config_store: Tolerance configuration storage
        tenant_id: Tenant whose configuration is requested

    Returns:
        ToleranceConfig to thread through the match run
    """
    defaults = default_tolerances()
    row = config_store.get_or_create_tolerance_config(tenant_id, defaults)

    tolerance = ToleranceConfig(
        tenant_id=tenant_id,
        quantity_tolerance_pct=_sanitize_percentage(
            tenant_id, "quantity_tolerance_pct", row.get("quantity_tolerance_pct"),
            defaults["quantity_tolerance_pct"],
        ),
        price_tolerance_pct=_sanitize_percentage(
            tenant_id, "price_tolerance_pct", row.get("price_tolerance_pct"),
            defaults["price_tolerance_pct"],
        ),
        allow_payment_without_match=_sanitize_flag(
            tenant_id, "allow_payment_without_match", row.get("allow_payment_without_match"),
            defaults["allow_payment_without_match"],
        ),
    )

    logger.debug(
        f"Tenant {tenant_id} tolerances: quantity {tolerance.quantity_tolerance_pct}%, "
        f"price {tolerance.price_tolerance_pct}%"
    )
    return tolerance
