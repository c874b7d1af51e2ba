import pytest

from services.fulfillment_service.exceptions import (
    AlreadyExists,
    AuthorizationError,
    NotFound,
    ValidationError,
)
from services.fulfillment_service.models import (
    AuditLogEntry,
    Notification,
    Order,
    Shipment,
    SubOrder,
    TrackingPoint,
)
from services.fulfillment_service.repository import FulfillmentRepository
from services.fulfillment_service.schemas import ShipmentUpdate


@pytest.fixture
def placed_order(orchestrator, world, order_data):
    async def place(qty_a=2, qty_b=1):
        return await orchestrator.create_order(world.customer, order_data(qty_a=qty_a, qty_b=qty_b))
    return place


async def _status_of(session_factory, model, id_):
    async with session_factory() as db:
        return (await db.get(model, id_)).status


class TestCreateShipment:
    @pytest.mark.asyncio
    async def test_without_driver_stays_pending_and_advances_sub_order(
        self, orchestrator, session_factory, world, placed_order, sub_order_of
    ):
        order = await placed_order()
        sub_a = sub_order_of(order, world.store_a_id)

        shipment = await orchestrator.create_shipment(world.vendor_a, sub_a.id, priority="high", notes="Fragile")

        assert shipment.status == "pending"
        assert shipment.priority == "high"
        assert shipment.origin_address_id == world.warehouse_a_id
        assert await _status_of(session_factory, SubOrder, sub_a.id) == "in_progress"
        assert await _status_of(session_factory, Order, order.id) == "in_progress"

    @pytest.mark.asyncio
    async def test_with_driver_starts_in_progress_and_notifies_driver(
        self, orchestrator, world, placed_order, sub_order_of, count_rows
    ):
        order = await placed_order()
        sub_a = sub_order_of(order, world.store_a_id)

        shipment = await orchestrator.create_shipment(world.vendor_a, sub_a.id, driver_id=world.driver_a_id)

        assert shipment.status == "in_progress"
        assert shipment.driver_id == world.driver_a_id
        assert await count_rows(Notification, user_id=world.driver_a_user_id) == 1

    @pytest.mark.asyncio
    async def test_second_active_shipment_is_rejected(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        sub_a = sub_order_of(order, world.store_a_id)
        await orchestrator.create_shipment(world.vendor_a, sub_a.id)

        with pytest.raises(AlreadyExists):
            await orchestrator.create_shipment(world.vendor_a, sub_a.id)

    @pytest.mark.asyncio
    async def test_vendor_cannot_ship_another_stores_sub_order(
        self, orchestrator, session_factory, world, placed_order, sub_order_of
    ):
        order = await placed_order()
        sub_b = sub_order_of(order, world.store_b_id)

        with pytest.raises(AuthorizationError):
            await orchestrator.create_shipment(world.vendor_a, sub_b.id)
        assert await _status_of(session_factory, SubOrder, sub_b.id) == "pending"

    @pytest.mark.asyncio
    async def test_driver_must_be_linked_to_the_store(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        sub_a = sub_order_of(order, world.store_a_id)

        with pytest.raises(AuthorizationError):
            await orchestrator.create_shipment(world.vendor_a, sub_a.id, driver_id=world.driver_b_id)

    @pytest.mark.asyncio
    async def test_invalid_priority(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        with pytest.raises(ValidationError):
            await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id, priority="urgent")

    @pytest.mark.asyncio
    async def test_unknown_sub_order(self, orchestrator, world):
        with pytest.raises(NotFound):
            await orchestrator.create_shipment(world.vendor_a, 9999)

    @pytest.mark.asyncio
    async def test_new_shipment_allowed_after_failure(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        sub_a = sub_order_of(order, world.store_a_id)
        first = await orchestrator.create_shipment(world.vendor_a, sub_a.id, driver_id=world.driver_a_id)
        await orchestrator.update_shipment(world.vendor_a, first.id, ShipmentUpdate(status="failed"))

        second = await orchestrator.create_shipment(world.vendor_a, sub_a.id)
        assert second.id != first.id


class TestUpdateShipment:
    @pytest.mark.asyncio
    async def test_assigning_driver_forces_in_progress(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        updated = await orchestrator.update_shipment(
            world.vendor_a, shipment.id, ShipmentUpdate(driver_id=world.driver_a_id, delivery_notes="Call on arrival")
        )

        assert updated.status == "in_progress"
        assert updated.last_known_status == "pending"
        assert updated.delivery_notes == "Call on arrival"

    @pytest.mark.asyncio
    async def test_pending_shipment_needs_a_driver_to_move(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        with pytest.raises(ValidationError):
            await orchestrator.update_shipment(world.vendor_a, shipment.id, ShipmentUpdate(status="delivered"))

    @pytest.mark.asyncio
    async def test_delivered_shipment_cannot_move_again(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(
            world.vendor_a, sub_order_of(order, world.store_a_id).id, driver_id=world.driver_a_id
        )
        await orchestrator.update_shipment(world.vendor_a, shipment.id, ShipmentUpdate(status="delivered"))

        with pytest.raises(AlreadyExists):
            await orchestrator.update_shipment(world.vendor_a, shipment.id, ShipmentUpdate(status="delivered"))
        with pytest.raises(ValidationError):
            await orchestrator.update_shipment(world.vendor_a, shipment.id, ShipmentUpdate(status="failed"))

    @pytest.mark.asyncio
    async def test_unknown_status_value(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        with pytest.raises(ValidationError) as exc:
            await orchestrator.update_shipment(world.vendor_a, shipment.id, ShipmentUpdate(status="lost"))
        assert exc.value.details["field"] == "status"

    @pytest.mark.asyncio
    async def test_other_vendor_cannot_update(self, orchestrator, session_factory, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        with pytest.raises(AuthorizationError):
            await orchestrator.update_shipment(world.vendor_b, shipment.id, ShipmentUpdate(priority="low"))

    @pytest.mark.asyncio
    async def test_admin_may_update_any_shipment(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        # admins are not bound to the store's driver list
        updated = await orchestrator.update_shipment(world.admin, shipment.id, ShipmentUpdate(driver_id=world.driver_b_id))
        assert updated.driver_id == world.driver_b_id
        assert updated.status == "in_progress"

    @pytest.mark.asyncio
    async def test_customer_cannot_update(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        with pytest.raises(AuthorizationError):
            await orchestrator.update_shipment(world.customer, shipment.id, ShipmentUpdate(status="failed"))


class TestAssignDriver:
    @pytest.mark.asyncio
    async def test_vendor_assigns_own_driver(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        assigned = await orchestrator.assign_driver(world.vendor_a, shipment.id, world.driver_a_id)

        assert assigned.driver_id == world.driver_a_id
        assert assigned.status == "in_progress"

    @pytest.mark.asyncio
    async def test_vendor_cannot_assign_foreign_driver(self, orchestrator, session_factory, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        with pytest.raises(AuthorizationError):
            await orchestrator.assign_driver(world.vendor_a, shipment.id, world.driver_b_id)
        assert await _status_of(session_factory, Shipment, shipment.id) == "pending"

    @pytest.mark.asyncio
    async def test_vendor_cannot_assign_on_another_stores_shipment(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        with pytest.raises(AuthorizationError):
            await orchestrator.assign_driver(world.vendor_b, shipment.id, world.driver_b_id)

    @pytest.mark.asyncio
    async def test_admin_needs_an_existing_driver(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        with pytest.raises(NotFound):
            await orchestrator.assign_driver(world.admin, shipment.id, 9999)


class TestTrackingPoints:
    @pytest.mark.asyncio
    async def test_admin_appends_point_without_status_change(
        self, orchestrator, session_factory, world, placed_order, sub_order_of, count_rows
    ):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(
            world.vendor_a, sub_order_of(order, world.store_a_id).id, driver_id=world.driver_a_id
        )

        point = await orchestrator.add_tracking_point(world.admin, shipment.id, 14.6928, -17.4467)
        await orchestrator.add_tracking_point(world.admin, shipment.id, 14.7, -17.45)

        assert point.shipment_id == shipment.id
        assert await count_rows(TrackingPoint, shipment_id=shipment.id) == 2
        assert await _status_of(session_factory, Shipment, shipment.id) == "in_progress"

    @pytest.mark.asyncio
    async def test_vendor_cannot_add_points(self, orchestrator, world, placed_order, sub_order_of):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        with pytest.raises(AuthorizationError):
            await orchestrator.add_tracking_point(world.vendor_a, shipment.id, 14.69, -17.44)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("latitude, longitude", [(91, 0), (-90.5, 0), (0, 180.1), (0, -181)])
    async def test_coordinates_out_of_range(self, orchestrator, world, placed_order, sub_order_of, latitude, longitude):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        with pytest.raises(ValidationError):
            await orchestrator.add_tracking_point(world.admin, shipment.id, latitude, longitude)

    @pytest.mark.asyncio
    async def test_unknown_shipment(self, orchestrator, world):
        with pytest.raises(NotFound):
            await orchestrator.add_tracking_point(world.admin, 9999, 0, 0)


class TestCustomerNotifications:
    @pytest.mark.asyncio
    async def test_every_shipment_update_notifies_the_customer(
        self, orchestrator, world, placed_order, sub_order_of, count_rows
    ):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(
            world.vendor_a, sub_order_of(order, world.store_a_id).id, driver_id=world.driver_a_id
        )

        await orchestrator.update_shipment(world.vendor_a, shipment.id, ShipmentUpdate(delivery_notes="Call on arrival"))
        await orchestrator.update_shipment(world.vendor_a, shipment.id, ShipmentUpdate(status="delivered"))

        assert await count_rows(Notification, user_id=world.customer.id, type="shipment_updated") == 2
        assert await count_rows(AuditLogEntry, action="shipment_updated") == 2

    @pytest.mark.asyncio
    async def test_assigning_a_driver_notifies_the_customer(
        self, orchestrator, world, placed_order, sub_order_of, count_rows
    ):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        await orchestrator.assign_driver(world.vendor_a, shipment.id, world.driver_a_id)

        assert await count_rows(Notification, user_id=world.customer.id, type="shipment_updated") == 1
        assert await count_rows(Notification, user_id=world.driver_a_user_id, type="shipment_assigned") == 1

    @pytest.mark.asyncio
    async def test_tracking_point_notifies_and_audits(self, orchestrator, world, placed_order, sub_order_of, count_rows):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(
            world.vendor_a, sub_order_of(order, world.store_a_id).id, driver_id=world.driver_a_id
        )

        point = await orchestrator.add_tracking_point(world.admin, shipment.id, 14.6928, -17.4467)

        assert await count_rows(Notification, user_id=world.customer.id, type="tracking_added") == 1
        assert await count_rows(AuditLogEntry, action="tracking_added", user_id=world.admin.id) == 1
        assert point.id is not None

    @pytest.mark.asyncio
    async def test_rejected_tracking_point_leaves_no_side_effects(
        self, orchestrator, world, placed_order, sub_order_of, count_rows
    ):
        order = await placed_order()
        shipment = await orchestrator.create_shipment(world.vendor_a, sub_order_of(order, world.store_a_id).id)

        with pytest.raises(ValidationError):
            await orchestrator.add_tracking_point(world.admin, shipment.id, 95, 0)

        assert await count_rows(Notification, type="tracking_added") == 0
        assert await count_rows(AuditLogEntry, action="tracking_added") == 0


class TestConcurrentShipmentCreation:
    @pytest.mark.asyncio
    async def test_unique_index_collision_maps_to_already_exists(
        self, orchestrator, world, placed_order, sub_order_of, count_rows, monkeypatch
    ):
        order = await placed_order()
        sub_a = sub_order_of(order, world.store_a_id)
        await orchestrator.create_shipment(world.vendor_a, sub_a.id)

        # A second caller that read before the first committed sees no active shipment
        async def nothing_active(db, sub_order_id):
            return None

        monkeypatch.setattr(FulfillmentRepository, "get_active_shipment", staticmethod(nothing_active))

        with pytest.raises(AlreadyExists) as exc:
            await orchestrator.create_shipment(world.vendor_a, sub_a.id)

        assert exc.value.details == {"sub_order_id": sub_a.id}
        assert await count_rows(Shipment, sub_order_id=sub_a.id) == 1
