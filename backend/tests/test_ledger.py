"""Tests for ispnet/services/ledger.py - address assignment, release and reservation."""
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from conftest import add_customer, add_service, add_subnet
from ispnet.errors import HasDependents, NotAvailable, NotFound, PoolExhausted, ValidationFailed
from ispnet.models import IPAddress, Subnet
from ispnet.services import ledger
from ispnet.services import subnets as subnet_service


async def _status(db, address):
    row = await ledger.get_address_by_value(db, address)
    return row.status, row.customer_service_id


async def _counters(db, subnet_id):
    subnet = (await db.execute(
        select(Subnet).where(Subnet.id == subnet_id).execution_options(populate_existing=True)
    )).scalar_one()
    return subnet.total_ips, subnet.used_ips, subnet.reserved_ips, subnet.available_ips


class TestAutoAssign:

    @pytest.mark.asyncio
    async def test_lowest_available_first(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "192.168.1.0/24")
        s1 = await add_service(db, customer.id)
        s2 = await add_service(db, customer.id)

        first = await ledger.assign_address(db, s1.id, subnet_id=subnet.id)
        second = await ledger.assign_address(db, s2.id, subnet_id=subnet.id)
        await db.commit()

        assert first.address == "192.168.1.1"
        assert second.address == "192.168.1.2"
        assert first.status == "assigned"
        assert first.customer_service_id == s1.id
        assert first.assigned_at is not None
        assert s1.ip_address == "192.168.1.1"
        assert await _counters(db, subnet.id) == (254, 2, 0, 252)

    @pytest.mark.asyncio
    async def test_released_address_is_reused_first(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/29")
        s1 = await add_service(db, customer.id)
        s2 = await add_service(db, customer.id)
        await ledger.assign_address(db, s1.id, subnet_id=subnet.id)
        await ledger.release_address(db, service_id=s1.id)
        await db.commit()

        again = await ledger.assign_address(db, s2.id, subnet_id=subnet.id)
        assert again.address == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_router_scope_spans_active_subnets(self, db, router, customer):
        await add_subnet(db, router.id, "10.20.0.0/30", status="inactive")
        await add_subnet(db, router.id, "10.30.0.0/30")
        service = await add_service(db, customer.id)

        picked = await ledger.assign_address(db, service.id, router_id=router.id)
        assert picked.address == "10.30.0.1"

    @pytest.mark.asyncio
    async def test_pool_exhausted(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/30")
        services = [await add_service(db, customer.id) for _ in range(3)]
        for s in services[:2]:
            await ledger.assign_address(db, s.id, subnet_id=subnet.id)
        await db.commit()

        with pytest.raises(PoolExhausted) as exc:
            await ledger.assign_address(db, services[2].id, subnet_id=subnet.id)
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_scope_required(self, db, customer):
        service = await add_service(db, customer.id)
        with pytest.raises(ValidationFailed):
            await ledger.assign_address(db, service.id)

    @pytest.mark.asyncio
    async def test_inactive_subnet_refused(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/29", status="inactive")
        service = await add_service(db, customer.id)
        with pytest.raises(NotAvailable):
            await ledger.assign_address(db, service.id, subnet_id=subnet.id)

    @pytest.mark.asyncio
    async def test_unknown_service(self, db, router):
        subnet = await add_subnet(db, router.id, "10.0.0.0/29")
        with pytest.raises(NotFound):
            await ledger.assign_address(db, 999, subnet_id=subnet.id)


class TestSpecificAssign:

    @pytest.mark.asyncio
    async def test_claims_exact_address(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/28")
        service = await add_service(db, customer.id)

        row = await ledger.assign_address(db, service.id, subnet_id=subnet.id, address="10.0.0.9")
        await db.commit()

        assert row.address == "10.0.0.9"
        assert await _status(db, "10.0.0.9") == ("assigned", service.id)

    @pytest.mark.asyncio
    async def test_taken_address_not_available(self, db, router, customer):
        await add_subnet(db, router.id, "10.0.0.0/28")
        s1 = await add_service(db, customer.id)
        s2 = await add_service(db, customer.id)
        await ledger.assign_address(db, s1.id, address="10.0.0.5", router_id=router.id)
        await db.commit()

        with pytest.raises(NotAvailable) as exc:
            await ledger.assign_address(db, s2.id, address="10.0.0.5", router_id=router.id)
        assert exc.value.message == "IP address not available or not found"

    @pytest.mark.asyncio
    async def test_unknown_address_not_available(self, db, router, customer):
        await add_subnet(db, router.id, "10.0.0.0/28")
        service = await add_service(db, customer.id)
        with pytest.raises(NotAvailable):
            await ledger.assign_address(db, service.id, address="10.0.9.9", router_id=router.id)

    @pytest.mark.asyncio
    async def test_malformed_address(self, db, router, customer):
        await add_subnet(db, router.id, "10.0.0.0/28")
        service = await add_service(db, customer.id)
        with pytest.raises(ValidationFailed):
            await ledger.assign_address(db, service.id, address="10.0.0.300", router_id=router.id)

    @pytest.mark.asyncio
    async def test_service_holds_one_address(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/28")
        service = await add_service(db, customer.id)
        await ledger.assign_address(db, service.id, subnet_id=subnet.id)
        await db.commit()
        with pytest.raises(NotAvailable):
            await ledger.assign_address(db, service.id, subnet_id=subnet.id)

    @pytest.mark.asyncio
    async def test_stale_reader_loses(self, database, db, router, customer):
        """A session that saw the address as available before another claimed it gets NotAvailable."""
        subnet = await add_subnet(db, router.id, "10.0.0.0/29")
        s1 = await add_service(db, customer.id)
        s2 = await add_service(db, customer.id)

        async with database.session() as a, database.session() as b:
            seen = await ledger.get_address_by_value(b, "10.0.0.3")
            assert seen.status == "available"

            await ledger.assign_address(a, s1.id, subnet_id=subnet.id, address="10.0.0.3")
            await a.commit()

            with pytest.raises(NotAvailable):
                await ledger.assign_address(b, s2.id, subnet_id=subnet.id, address="10.0.0.3")
            await b.rollback()

        assert await _status(db, "10.0.0.3") == ("assigned", s1.id)

    @pytest.mark.asyncio
    async def test_concurrent_auto_pick_on_last_address(self, database, db, router, customer):
        """Two sessions racing for the only free address: one wins, the other finds the pool exhausted."""
        subnet = await add_subnet(db, router.id, "10.0.0.0/30")
        await ledger.reserve_address(db, "10.0.0.1", notes="CPE mgmt")
        await db.commit()
        subnet_id = subnet.id
        s1 = await add_service(db, customer.id)
        s2 = await add_service(db, customer.id)
        s1_id, s2_id = s1.id, s2.id

        async with database.session() as a, database.session() as b:
            free = await ledger.list_addresses(b, status="available", subnet_id=subnet_id)
            assert [r["address"] for r in free] == ["10.0.0.2"]

            won = await ledger.assign_address(a, s1_id, subnet_id=subnet_id)
            await a.commit()
            assert won.address == "10.0.0.2"

            with pytest.raises(PoolExhausted):
                await ledger.assign_address(b, s2_id, subnet_id=subnet_id)
            await b.rollback()

        assigned = (await db.execute(
            select(func.count(IPAddress.id)).where(IPAddress.subnet_id == subnet_id, IPAddress.status == "assigned")
        )).scalar()
        assert assigned == 1
        assert await _status(db, "10.0.0.2") == ("assigned", s1_id)


class TestRelease:

    @pytest.mark.asyncio
    async def test_release_by_service(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/29")
        service = await add_service(db, customer.id)
        await ledger.assign_address(db, service.id, subnet_id=subnet.id)
        await db.commit()

        released = await ledger.release_address(db, service_id=service.id, reason="moved")
        await db.commit()

        assert released.address == "10.0.0.1"
        assert released.status == "available"
        assert released.customer_service_id is None
        assert released.assigned_at is None
        await db.refresh(service)
        assert service.ip_address is None
        assert await _counters(db, subnet.id) == (6, 0, 0, 6)

    @pytest.mark.asyncio
    async def test_release_twice_is_noop(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/29")
        service = await add_service(db, customer.id)
        await ledger.assign_address(db, service.id, subnet_id=subnet.id)
        await ledger.release_address(db, address="10.0.0.1")
        await db.commit()

        again = await ledger.release_address(db, address="10.0.0.1")
        await db.commit()

        assert again.status == "available"
        assert await _counters(db, subnet.id) == (6, 0, 0, 6)

    @pytest.mark.asyncio
    async def test_service_without_address(self, db, customer):
        service = await add_service(db, customer.id)
        assert await ledger.release_address(db, service_id=service.id) is None

    @pytest.mark.asyncio
    async def test_unknown_address(self, db):
        with pytest.raises(NotFound):
            await ledger.release_address(db, address="198.51.100.7")

    @pytest.mark.asyncio
    async def test_target_required(self, db):
        with pytest.raises(ValidationFailed):
            await ledger.release_address(db)


class TestReserve:

    @pytest.mark.asyncio
    async def test_reserved_address_skipped_by_auto_pick(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/29")
        await ledger.reserve_address(db, "10.0.0.1", notes="gateway VRRP")
        service = await add_service(db, customer.id)

        picked = await ledger.assign_address(db, service.id, subnet_id=subnet.id)
        await db.commit()

        assert picked.address == "10.0.0.2"
        assert await _counters(db, subnet.id) == (6, 1, 1, 4)

    @pytest.mark.asyncio
    async def test_assigned_address_cannot_be_reserved(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/29")
        service = await add_service(db, customer.id)
        await ledger.assign_address(db, service.id, subnet_id=subnet.id)
        with pytest.raises(NotAvailable):
            await ledger.reserve_address(db, "10.0.0.1")

    @pytest.mark.asyncio
    async def test_release_returns_reserved_to_pool(self, db, router):
        await add_subnet(db, router.id, "10.0.0.0/29")
        await ledger.reserve_address(db, "10.0.0.4", notes="printer")
        released = await ledger.release_address(db, address="10.0.0.4")
        assert released.status == "available"
        assert released.notes is None


class TestListingAndSync:

    @pytest.mark.asyncio
    async def test_filters(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/29")
        other_customer = await add_customer(db)
        mine = await add_service(db, customer.id)
        theirs = await add_service(db, other_customer.id)
        await ledger.assign_address(db, mine.id, subnet_id=subnet.id)
        await ledger.assign_address(db, theirs.id, subnet_id=subnet.id)
        await db.commit()

        rows = await ledger.list_addresses(db, customer_id=customer.id)
        assert [r["address"] for r in rows] == ["10.0.0.1"]
        assert rows[0]["subnet_cidr"] == "10.0.0.0/29"
        assert rows[0]["router_id"] == router.id

        available = await ledger.list_addresses(db, status="available", subnet_id=subnet.id)
        assert [r["address"] for r in available] == [f"10.0.0.{i}" for i in range(3, 7)]

    @pytest.mark.asyncio
    async def test_router_availability_skips_inactive_subnets(self, db, router):
        await add_subnet(db, router.id, "10.0.0.0/30", status="inactive")
        await add_subnet(db, router.id, "10.0.1.0/30")

        rows = await ledger.available_addresses_for_router(db, router.id)

        assert [r["address"] for r in rows] == ["10.0.1.1", "10.0.1.2"]

    @pytest.mark.asyncio
    async def test_stale_assignments_and_mark_synced(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/29")
        service = await add_service(db, customer.id)
        row = await ledger.assign_address(db, service.id, subnet_id=subnet.id)
        await db.commit()

        stale = await ledger.stale_assignments(db, timedelta(minutes=5))
        assert [ip.id for ip in stale] == [row.id]

        assert await ledger.mark_synced(db, [row.id]) == 1
        await db.commit()
        assert await ledger.stale_assignments(db, timedelta(minutes=5)) == []

    @pytest.mark.asyncio
    async def test_mark_synced_ignores_free_addresses(self, db, router):
        await add_subnet(db, router.id, "10.0.0.0/29")
        free = await ledger.get_address_by_value(db, "10.0.0.2")
        assert await ledger.mark_synced(db, [free.id]) == 0


class TestSubnetDeletion:

    @pytest.mark.asyncio
    async def test_blocked_while_assigned(self, db, router, customer):
        subnet = await add_subnet(db, router.id, "10.0.0.0/29")
        service = await add_service(db, customer.id)
        await ledger.assign_address(db, service.id, subnet_id=subnet.id)
        await db.commit()

        with pytest.raises(HasDependents):
            await subnet_service.delete_subnet(db, subnet.id)

        await ledger.release_address(db, service_id=service.id)
        await db.commit()
        await subnet_service.delete_subnet(db, subnet.id)

        remaining = (await db.execute(select(IPAddress).where(IPAddress.subnet_id == subnet.id))).all()
        assert remaining == []
