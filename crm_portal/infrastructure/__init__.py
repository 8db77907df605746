from __future__ import annotations

from crm_portal.db import get_db
from crm_portal.infrastructure.store import Store, TableQuery, TenantScopeRequiredError, new_id, utc_now_iso
from crm_portal.realtime import get_realtime_channel
from crm_portal.access import scoped_tenant_id


def get_store(tenant_id: str | None = None) -> Store:
    return Store(get_db(), tenant_id=scoped_tenant_id(tenant_id), channel=get_realtime_channel())


__all__ = ["Store", "TableQuery", "TenantScopeRequiredError", "get_store", "new_id", "utc_now_iso"]
