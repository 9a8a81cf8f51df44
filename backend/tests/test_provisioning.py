"""Tests for ispnet/services/provisioning.py - service provisioning and lifecycle."""
import pytest
from sqlalchemy import func, select

from conftest import add_service, add_subnet
from ispnet.errors import ActiveServiceExists, NotAvailable, NotFound, PoolExhausted, RouterUnavailable, ValidationFailed
from ispnet.models import CustomerService, RouterSyncStatus, SystemEvent
from ispnet.services import ledger, provisioning


class TestProvisionService:

    @pytest.mark.asyncio
    async def test_dynamic_takes_lowest_router_address(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")

        service = await provisioning.provision_service(db, customer.id, plan.id, router.id)

        assert service.status == "pending"
        assert service.ip_address == "100.64.0.1"
        assert service.router_id == router.id
        assert service.monthly_fee == 49

        sync = (await db.execute(
            select(RouterSyncStatus).where(RouterSyncStatus.customer_service_id == service.id)
        )).scalar_one()
        assert sync.sync_status == "pending"
        assert sync.router_id == router.id

        event_types = (await db.execute(select(SystemEvent.event_type))).scalars().all()
        assert "provisioning_requested" in event_types
        assert "ip_assigned" in event_types

    @pytest.mark.asyncio
    async def test_static_address(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        service = await provisioning.provision_service(
            db, customer.id, plan.id, router.id, allocation_mode="static", ip_address="100.64.0.5"
        )
        assert service.ip_address == "100.64.0.5"

    @pytest.mark.asyncio
    async def test_static_address_must_belong_to_router(self, db, router, customer, plan):
        other = await _second_router(db)
        await add_subnet(db, router.id, "100.64.0.0/29")
        await add_subnet(db, other.id, "100.65.0.0/29")

        with pytest.raises(NotAvailable):
            await provisioning.provision_service(
                db, customer.id, plan.id, router.id, allocation_mode="static", ip_address="100.65.0.2"
            )

    @pytest.mark.asyncio
    async def test_static_requires_address(self, db, router, customer, plan):
        with pytest.raises(ValidationFailed):
            await provisioning.provision_service(db, customer.id, plan.id, router.id, allocation_mode="static")

    @pytest.mark.asyncio
    async def test_unknown_mode(self, db, router, customer, plan):
        with pytest.raises(ValidationFailed):
            await provisioning.provision_service(db, customer.id, plan.id, router.id, allocation_mode="pppoe")

    @pytest.mark.asyncio
    async def test_offline_router(self, db, offline_router, customer, plan):
        with pytest.raises(RouterUnavailable) as exc:
            await provisioning.provision_service(db, customer.id, plan.id, offline_router.id)
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_router(self, db, customer, plan):
        with pytest.raises(RouterUnavailable):
            await provisioning.provision_service(db, customer.id, plan.id, 4242)

    @pytest.mark.asyncio
    async def test_missing_customer(self, db, router, plan):
        with pytest.raises(NotFound):
            await provisioning.provision_service(db, 4242, plan.id, router.id)

    @pytest.mark.asyncio
    async def test_single_active_service_policy(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        await provisioning.provision_service(db, customer.id, plan.id, router.id)

        with pytest.raises(ActiveServiceExists):
            await provisioning.provision_service(db, customer.id, plan.id, router.id, enforce_single_service=True)

        second = await provisioning.provision_service(
            db, customer.id, plan.id, router.id, enforce_single_service=False
        )
        assert second.ip_address == "100.64.0.2"

    @pytest.mark.asyncio
    async def test_terminated_service_does_not_count(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        await add_service(db, customer.id, status="terminated")
        service = await provisioning.provision_service(db, customer.id, plan.id, router.id, enforce_single_service=True)
        assert service.status == "pending"

    @pytest.mark.asyncio
    async def test_exhausted_pool_leaves_no_service(self, db, router, customer, plan):
        with pytest.raises(PoolExhausted):
            await provisioning.provision_service(db, customer.id, plan.id, router.id)
        count = (await db.execute(select(func.count(CustomerService.id)))).scalar()
        assert count == 0


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_suspend_keeps_address_by_default(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        service = await provisioning.provision_service(db, customer.id, plan.id, router.id)

        suspended, released = await provisioning.suspend_service(db, service.id, reason="non-payment")

        assert suspended.status == "suspended"
        assert released is None
        assert suspended.ip_address == "100.64.0.1"

    @pytest.mark.asyncio
    async def test_suspend_with_release(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        service = await provisioning.provision_service(db, customer.id, plan.id, router.id)

        suspended, released = await provisioning.suspend_service(db, service.id, release_ip=True)

        assert released.address == "100.64.0.1"
        assert released.status == "available"
        assert suspended.ip_address is None
        sync = (await db.execute(
            select(RouterSyncStatus).where(RouterSyncStatus.customer_service_id == service.id)
        )).scalar_one()
        assert sync.sync_status == "released"

    @pytest.mark.asyncio
    async def test_terminate_releases_by_default(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        service = await provisioning.provision_service(db, customer.id, plan.id, router.id)

        terminated, released = await provisioning.terminate_service(db, service.id)

        assert terminated.status == "terminated"
        assert released.address == "100.64.0.1"
        row = await ledger.get_address_by_value(db, "100.64.0.1")
        assert row.status == "available"

    @pytest.mark.asyncio
    async def test_terminated_cannot_be_suspended(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        service = await provisioning.provision_service(db, customer.id, plan.id, router.id)
        await provisioning.terminate_service(db, service.id)
        with pytest.raises(ValidationFailed):
            await provisioning.suspend_service(db, service.id)

    @pytest.mark.asyncio
    async def test_reactivate(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        service = await provisioning.provision_service(db, customer.id, plan.id, router.id)

        with pytest.raises(ValidationFailed):
            await provisioning.reactivate_service(db, service.id)

        await provisioning.suspend_service(db, service.id)
        active = await provisioning.reactivate_service(db, service.id)
        assert active.status == "active"
        assert active.ip_address == "100.64.0.1"

    @pytest.mark.asyncio
    async def test_release_all_customer_addresses(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        await provisioning.provision_service(db, customer.id, plan.id, router.id)
        await provisioning.provision_service(db, customer.id, plan.id, router.id, enforce_single_service=False)
        await add_service(db, customer.id)

        released = await provisioning.release_customer_addresses(db, customer.id)

        assert sorted(ip.address for ip in released) == ["100.64.0.1", "100.64.0.2"]
        assert await ledger.list_addresses(db, customer_id=customer.id) == []

    @pytest.mark.asyncio
    async def test_list_services(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        service = await provisioning.provision_service(db, customer.id, plan.id, router.id)

        rows = await provisioning.list_services(db, router_id=router.id, status="pending")

        assert [(s.id, router_name, plan_name) for s, router_name, plan_name in rows] == [
            (service.id, "core-rtr-1", "Fiber 100")
        ]


async def _second_router(db):
    from ispnet.models import NetworkDevice
    device = NetworkDevice(name="core-rtr-2", ip_address="10.255.0.2", status="online")
    db.add(device)
    await db.commit()
    return device


async def _sync_row(db, service_id):
    return (await db.execute(
        select(RouterSyncStatus)
        .where(RouterSyncStatus.customer_service_id == service_id)
        .execution_options(populate_existing=True)
    )).scalar_one()


class TestRouterSyncResult:

    @pytest.mark.asyncio
    async def test_success_activates_service(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        service = await provisioning.provision_service(db, customer.id, plan.id, router.id)
        service_id = service.id

        service, sync = await provisioning.record_sync_result(db, service_id, success=True)

        assert service.status == "active"
        assert sync.sync_status == "in_sync"
        assert sync.last_synced is not None
        assert sync.retry_count == 0
        address = await ledger.get_address_by_value(db, "100.64.0.1")
        await db.refresh(address)
        assert address.last_synced is not None

    @pytest.mark.asyncio
    async def test_failure_counts_retries_then_recovers(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        service = await provisioning.provision_service(db, customer.id, plan.id, router.id)
        service_id = service.id

        await provisioning.record_sync_result(db, service_id, success=False, message="Router unreachable")
        service, sync = await provisioning.record_sync_result(db, service_id, success=False, message="Router unreachable")

        assert service.status == "failed"
        assert service.ip_address == "100.64.0.1"
        assert sync.sync_status == "out_of_sync"
        assert sync.retry_count == 2
        assert sync.sync_message == "Router unreachable"

        service, sync = await provisioning.record_sync_result(db, service_id, success=True)
        assert service.status == "active"
        assert sync.sync_status == "in_sync"
        assert sync.retry_count == 2

        failures = (await db.execute(
            select(func.count(SystemEvent.id)).where(SystemEvent.event_type == "provisioning_failed")
        )).scalar()
        assert failures == 2

    @pytest.mark.asyncio
    async def test_terminated_service_rejected(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        service = await provisioning.provision_service(db, customer.id, plan.id, router.id)
        service_id = service.id
        await provisioning.terminate_service(db, service_id)

        with pytest.raises(ValidationFailed):
            await provisioning.record_sync_result(db, service_id, success=True)

    @pytest.mark.asyncio
    async def test_mark_synced_touches_sync_row(self, db, router, customer, plan):
        await add_subnet(db, router.id, "100.64.0.0/29")
        service = await provisioning.provision_service(db, customer.id, plan.id, router.id)
        service_id = service.id
        assert (await _sync_row(db, service_id)).last_synced is None

        address = await ledger.get_address_by_value(db, "100.64.0.1")
        assert await ledger.mark_synced(db, [address.id]) == 1
        await db.commit()

        assert (await _sync_row(db, service_id)).last_synced is not None
