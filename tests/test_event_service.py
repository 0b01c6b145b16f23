import unittest
import uuid

from sqlmodel import Session

from app.core.config import Settings
from app.models.order import OrderEvent
from app.services.event_service import (
    ORDER_CREATED,
    RUNNER_ARRIVED,
    RUNNER_ASSIGNED,
    OrderEventEmitter,
)
from app.services.notifications import (
    EdgeFunctionDispatcher,
    EmailDispatcher,
    LogDispatcher,
    build_dispatcher,
    render_notification,
)
from tests.factories import (
    RecordingDispatcher,
    RecordingScheduler,
    make_engine,
    make_order,
    make_user,
)


class OrderEventEmitterTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine()
        self.session = Session(self.engine)
        self.customer = make_user(self.session, "customer")
        self.order = make_order(self.session, self.customer)

    def tearDown(self):
        self.session.close()
        self.engine.dispose()

    def test_event_is_stored_before_dispatch_runs(self):
        dispatcher = RecordingDispatcher()
        scheduler = RecordingScheduler()
        emitter = OrderEventEmitter(dispatcher=dispatcher, scheduler=scheduler)

        result = emitter.emit_order_created(self.session, self.order.id, 200.0)

        self.assertTrue(result.success)
        stored = self.session.get(OrderEvent, result.event_id)
        self.assertEqual(stored.event_type, ORDER_CREATED)
        self.assertEqual(stored.payload, {"amount": 200.0})
        self.assertEqual(dispatcher.dispatched, [])

        scheduler.run_all()

        self.assertEqual(dispatcher.dispatched, [result.event_id])

    def test_per_call_scheduler_overrides_default(self):
        dispatcher = RecordingDispatcher()
        scheduler = RecordingScheduler()
        emitter = OrderEventEmitter(dispatcher=dispatcher)

        emitter.emit_runner_arrived(self.session, self.order.id, scheduler=scheduler)

        self.assertEqual(dispatcher.dispatched, [])
        self.assertEqual(len(scheduler.tasks), 1)

    def test_unknown_event_type_is_rejected(self):
        dispatcher = RecordingDispatcher()
        emitter = OrderEventEmitter(dispatcher=dispatcher)

        with self.assertLogs("app.services.event_service", level="ERROR"):
            result = emitter.emit_order_event(self.session, self.order.id, "order_teleported")

        self.assertFalse(result.success)
        self.assertIsNone(result.event_id)
        self.assertEqual(emitter.history(self.session, self.order.id), [])

    def test_failed_dispatch_is_logged_and_counted_but_emit_succeeds(self):
        emitter = OrderEventEmitter(dispatcher=RecordingDispatcher(fail=True))

        with self.assertLogs("app.services.event_service", level="ERROR") as logs:
            result = emitter.emit_runner_assigned(
                self.session, self.order.id, uuid.uuid4(), runner_name="Sam"
            )

        self.assertTrue(result.success)
        self.assertEqual(emitter.failed_dispatches, 1)
        self.assertIn(str(result.event_id), logs.output[0])
        self.assertTrue(emitter.has_event(self.session, self.order.id, RUNNER_ASSIGNED))

    def test_has_event_and_history(self):
        emitter = OrderEventEmitter(dispatcher=RecordingDispatcher())
        self.assertFalse(emitter.has_event(self.session, self.order.id, RUNNER_ARRIVED))

        emitter.emit_order_created(self.session, self.order.id, 200.0)
        emitter.emit_runner_arrived(self.session, self.order.id)

        self.assertTrue(emitter.has_event(self.session, self.order.id, RUNNER_ARRIVED))
        types = [e.event_type for e in emitter.history(self.session, self.order.id)]
        self.assertEqual(types, [ORDER_CREATED, RUNNER_ARRIVED])

    def test_refund_helpers(self):
        emitter = OrderEventEmitter(dispatcher=RecordingDispatcher())

        self.assertTrue(emitter.emit_refund_processing(self.session, self.order.id).success)
        self.assertTrue(emitter.emit_refund_succeeded(self.session, self.order.id).success)
        failed = emitter.emit_refund_failed(self.session, self.order.id, error="card declined")

        self.assertEqual(self.session.get(OrderEvent, failed.event_id).payload, {"error": "card declined"})


class RenderNotificationTestCase(unittest.TestCase):
    def test_runner_assigned_uses_name_when_present(self):
        title, body = render_notification("runner_assigned", {"runner_name": "Sam"})
        self.assertEqual(title, "Runner assigned")
        self.assertIn("Meet Sam", body)

        _, anonymous = render_notification("runner_assigned", {})
        self.assertIn("arrive soon", anonymous)

    def test_en_route_eta_in_minutes(self):
        _, body = render_notification("runner_en_route", {"eta_seconds": 600})
        self.assertIn("10 minutes", body)

    def test_refund_failed_includes_error(self):
        _, body = render_notification("refund_failed", {"error": "card declined"})
        self.assertIn("card declined", body)

    def test_unknown_type_has_no_template(self):
        with self.assertLogs("app.services.notifications", level="WARNING"):
            self.assertIsNone(render_notification("order_teleported", {}))


class FakeFunctions:
    def __init__(self):
        self.calls = []

    def invoke(self, name, invoke_options=None):
        self.calls.append((name, invoke_options))


class FakeSupabase:
    def __init__(self):
        self.functions = FakeFunctions()


class DispatcherTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine()
        self.session = Session(self.engine)
        self.customer = make_user(self.session, "customer", email="pat@example.com")
        self.order = make_order(self.session, self.customer)

    def tearDown(self):
        self.session.close()
        self.engine.dispose()

    def test_edge_function_gets_only_the_event_id(self):
        client = FakeSupabase()
        dispatcher = EdgeFunctionDispatcher(client_factory=lambda: client, function_name="notify")
        event_id = uuid.uuid4()

        dispatcher.dispatch(event_id)

        self.assertEqual(
            client.functions.calls,
            [("notify", {"body": {"order_event_id": str(event_id)}})],
        )

    def test_email_dispatcher_sends_rendered_template_to_customer(self):
        sent = []
        dispatcher = EmailDispatcher(
            session_factory=lambda: Session(self.engine),
            sender=lambda **kw: sent.append(kw),
        )
        emitter = OrderEventEmitter(dispatcher=dispatcher)

        emitter.emit_order_cancelled(self.session, self.order.id, reason="changed my mind")

        self.assertEqual(len(sent), 1)
        self.assertEqual(sent[0]["to_email"], "pat@example.com")
        self.assertEqual(sent[0]["subject"], "Order cancelled")

    def test_email_dispatcher_skips_unknown_event(self):
        sent = []
        dispatcher = EmailDispatcher(
            session_factory=lambda: Session(self.engine),
            sender=lambda **kw: sent.append(kw),
        )

        with self.assertLogs("app.services.notifications", level="WARNING"):
            dispatcher.dispatch(uuid.uuid4())

        self.assertEqual(sent, [])

    def test_build_dispatcher_follows_channel_setting(self):
        settings = Settings(
            SUPABASE_URL="http://localhost",
            SUPABASE_KEY="anon",
            DATABASE_URL="sqlite://",
            SUPABASE_JWT_SECRET="secret",
            NOTIFICATION_CHANNEL="log",
        )
        self.assertIsInstance(build_dispatcher(settings), LogDispatcher)

        settings.NOTIFICATION_CHANNEL = "edge"
        self.assertIsInstance(build_dispatcher(settings), EdgeFunctionDispatcher)


if __name__ == "__main__":
    unittest.main()
