import asyncio
import json
import sys
import tempfile
import unittest
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from vyos_dashboard.common.debug_log import DebugLog
from vyos_dashboard.core.config import ConnectionParamsError
from vyos_dashboard.core.models import REDACTED, ApiError, ConnectionParams, RawApiResponse
from vyos_dashboard.core.storage import STATE_KEY
from vyos_dashboard.session.manager import (
    CertificateRetryRequired,
    NotConnectedError,
    Session,
    SessionClosedError,
    SessionError,
)

SECRET = "s3cret-router-key"

CONFIG = {
    "system": {"host-name": "r1"},
    "service": {
        "dhcp-server": {"shared-network-name": {"LAN": {"subnet": {"192.168.1.0/24": {}}}}}
    },
}

LEASES = (
    "IP Address     MAC address        State    Lease start          Lease expiration     Remaining\n"
    "-------------  -----------------  -------  -------------------  -------------------  ---------\n"
    "192.168.1.10   00:11:22:33:44:55  active   2025/03/18 10:00:00  2025/03/19 10:00:00  23:59:59\n"
)


def _raw(document, status: int = 200) -> RawApiResponse:
    return RawApiResponse(http_status=status, body_text=json.dumps(document), parsed_json=document)


def _envelope(data) -> RawApiResponse:
    return _raw({"success": True, "data": data, "error": None})


class FakeGateway:
    """Returns canned results per operation; optional gates hold a call open."""

    def __init__(self) -> None:
        self.responses: dict[str, object] = {
            "showConfig": _envelope(CONFIG),
            "show": _envelope(LEASES),
            "set": _envelope(None),
            "delete": _envelope(None),
            "save": _envelope(""),
        }
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, list[str], ConnectionParams, object]] = []

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    async def send(self, operation, path, params, payload=None):
        self.calls.append((operation, list(path), params, payload))
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        return self.responses[operation]


class SessionTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.gateway = FakeGateway()
        self.debug_log = DebugLog()
        self.session = Session(self.gateway, debug_log=self.debug_log)
        self.params = ConnectionParams(host="192.0.2.1", secret_key=SECRET)

    async def _settle(self) -> None:
        for _ in range(5):
            await asyncio.sleep(0)


class ConnectTests(SessionTestCase):
    async def test_connect_stores_config_and_leases(self) -> None:
        entry = await self.session.connect(self.params)

        self.assertEqual("connected", self.session.state)
        self.assertEqual("r1", entry.config["system"]["host-name"])
        self.assertEqual({}, entry.config["interfaces"]["ethernet"])
        self.assertEqual(["192.168.1.10"], [lease.ip for lease in entry.leases["LAN"]])
        self.assertEqual(["showConfig", "show"], [call[0] for call in self.gateway.calls])
        self.assertEqual(SECRET, self.gateway.calls[0][2].secret_key)
        self.assertEqual(REDACTED, entry.connection_params.secret_key)

    async def test_connect_accepts_operator_mapping(self) -> None:
        await self.session.connect({"host": "router.lan", "secretKey": SECRET, "allowInsecureTLS": True})

        self.assertTrue(self.session.is_connected)
        self.assertTrue(self.session.connection_params.allow_insecure_tls)
        self.assertEqual(REDACTED, self.session.connection_params.secret_key)

    async def test_invalid_params_are_rejected_before_connecting(self) -> None:
        with self.assertRaises(ConnectionParamsError):
            await self.session.connect({"host": "", "secretKey": SECRET})

        self.assertEqual("disconnected", self.session.state)
        self.assertEqual([], self.gateway.calls)

    async def test_certificate_error_stays_connecting(self) -> None:
        self.gateway.responses["showConfig"] = ApiError(kind="certificate", message="self-signed certificate")

        with self.assertRaises(CertificateRetryRequired) as ctx:
            await self.session.connect(self.params)

        self.assertEqual("connecting", self.session.state)
        self.assertEqual("certificate", ctx.exception.error.kind)
        self.assertIn("insecure", str(ctx.exception))

        self.gateway.responses["showConfig"] = _envelope(CONFIG)
        insecure = ConnectionParams(host="192.0.2.1", secret_key=SECRET, allow_insecure_tls=True)
        await self.session.connect(insecure)
        self.assertEqual("connected", self.session.state)

    async def test_transport_error_returns_to_disconnected(self) -> None:
        error = ApiError(kind="transport", message="Connection refused")
        self.gateway.responses["showConfig"] = error

        with self.assertRaises(SessionError) as ctx:
            await self.session.connect(self.params)

        self.assertIs(error, ctx.exception.error)
        self.assertFalse(ctx.exception.transient)
        self.assertEqual("disconnected", self.session.state)
        self.assertIsNone(self.session.connection_params)
        self.assertIsNone(self.session.cache.get())

    async def test_rejected_response_returns_to_disconnected(self) -> None:
        self.gateway.responses["showConfig"] = _raw({"success": False, "error": "Invalid API key", "data": None}, 401)

        with self.assertRaises(SessionError) as ctx:
            await self.session.connect(self.params)

        self.assertEqual("server_rejected", ctx.exception.error.kind)
        self.assertEqual("Invalid API key", ctx.exception.error.message)
        self.assertEqual("disconnected", self.session.state)

    async def test_text_instead_of_config_is_malformed(self) -> None:
        self.gateway.responses["showConfig"] = RawApiResponse(http_status=200, body_text="not a config")

        with self.assertRaises(SessionError) as ctx:
            await self.session.connect(self.params)

        self.assertEqual("malformed_response", ctx.exception.error.kind)

    async def test_lease_failure_does_not_block_connect(self) -> None:
        self.gateway.responses["show"] = ApiError(kind="timeout", message="Request timed out")

        entry = await self.session.connect(self.params)

        self.assertTrue(self.session.is_connected)
        self.assertIsNone(entry.leases)


class RefreshTests(SessionTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        await self.session.connect(self.params)

    async def test_concurrent_refreshes_share_one_fetch(self) -> None:
        gate = asyncio.Event()
        self.gateway.gates["showConfig"] = gate

        first = asyncio.create_task(self.session.refresh_config())
        second = asyncio.create_task(self.session.refresh_config())
        await self._settle()
        gate.set()
        results = await asyncio.gather(first, second)

        self.assertIs(results[0], results[1])
        self.assertEqual(2, self.gateway.count("showConfig"))

    async def test_result_after_disconnect_is_discarded(self) -> None:
        gate = asyncio.Event()
        self.gateway.gates["showConfig"] = gate

        pending = asyncio.create_task(self.session.refresh_config())
        await self._settle()
        self.session.disconnect()
        gate.set()

        with self.assertRaises(SessionClosedError):
            await pending
        self.assertIsNone(self.session.cache.get())
        self.assertEqual("disconnected", self.session.state)

    async def test_failure_while_connected_keeps_stale_cache(self) -> None:
        self.gateway.responses["showConfig"] = ApiError(kind="transport", message="Network unreachable")

        with self.assertRaises(SessionError) as ctx:
            await self.session.refresh_config()

        self.assertTrue(ctx.exception.transient)
        self.assertEqual("connected", self.session.state)
        entry = self.session.cache.get()
        self.assertEqual("r1", entry.config["system"]["host-name"])
        self.assertFalse(self.session.cache.is_valid())

    async def test_get_config_uses_valid_cache(self) -> None:
        config = await self.session.get_config()

        self.assertEqual("r1", config["system"]["host-name"])
        self.assertEqual(1, self.gateway.count("showConfig"))

        await self.session.get_config(max_age=0)
        self.assertEqual(2, self.gateway.count("showConfig"))

    async def test_get_config_changes_do_not_reach_cache(self) -> None:
        config = await self.session.get_config()
        config["system"]["host-name"] = "edited"

        self.assertEqual("r1", self.session.cache.get().config["system"]["host-name"])
        self.assertEqual("r1", (await self.session.get_config())["system"]["host-name"])

    async def test_refresh_leases_only_replaces_leases(self) -> None:
        before = self.session.cache.get()
        self.gateway.responses["show"] = _raw(
            [{"ip_address": "192.168.1.99", "mac_address": "aa:bb", "binding_state": "active"}]
        )

        leases = await self.session.refresh_leases()

        after = self.session.cache.get()
        self.assertIs(before.config, after.config)
        self.assertEqual(before.fetched_at, after.fetched_at)
        self.assertEqual(["192.168.1.99"], [lease.ip for lease in leases["LAN"]])
        self.assertEqual(leases, after.leases)

    async def test_refresh_leases_failure_is_transient(self) -> None:
        self.gateway.responses["show"] = _raw({"success": False, "error": "command failed", "data": None}, 400)

        with self.assertRaises(SessionError) as ctx:
            await self.session.refresh_leases()

        self.assertTrue(ctx.exception.transient)
        self.assertIsNotNone(self.session.cache.get().leases)


class OperationTests(SessionTestCase):
    async def test_operations_require_connection(self) -> None:
        with self.assertRaises(NotConnectedError):
            await self.session.refresh_config()
        with self.assertRaises(NotConnectedError):
            await self.session.show(["interfaces"])

    async def test_show_returns_text(self) -> None:
        await self.session.connect(self.params)
        self.gateway.responses["show"] = _envelope("eth0  192.0.2.1/24  u/u")

        text = await self.session.show(["interfaces"])

        self.assertEqual("eth0  192.0.2.1/24  u/u", text)

    async def test_configure_sends_value_and_invalidates_cache(self) -> None:
        await self.session.connect(self.params)

        await self.session.configure("set", ["system", "host-name"], "r2")

        operation, path, _, _ = self.gateway.calls[-1]
        self.assertEqual("set", operation)
        self.assertEqual(["system", "host-name", "r2"], path)
        self.assertIsNone(self.session.cache.get())

    async def test_configure_rejects_other_operations(self) -> None:
        await self.session.connect(self.params)

        with self.assertRaises(ValueError):
            await self.session.configure("showConfig", ["system"])

    async def test_save_config_passes_file(self) -> None:
        await self.session.connect(self.params)

        await self.session.save_config("/config/backup.boot")

        operation, _, _, payload = self.gateway.calls[-1]
        self.assertEqual("save", operation)
        self.assertEqual({"file": "/config/backup.boot"}, payload)

    async def test_disconnect_drops_params_and_cache(self) -> None:
        await self.session.connect(self.params)

        self.session.disconnect()

        self.assertEqual("disconnected", self.session.state)
        self.assertIsNone(self.session.connection_params)
        self.assertIsNone(self.session.cache.get())
        self.assertFalse(self.session.snapshot()["isConnected"])


class SnapshotTests(SessionTestCase):
    async def test_snapshot_shape(self) -> None:
        await self.session.connect(self.params)

        snapshot = self.session.snapshot()

        self.assertTrue(snapshot["isConnected"])
        self.assertEqual(REDACTED, snapshot["connectionParams"]["secret_key"])
        self.assertEqual("r1", snapshot["config"]["system"]["host-name"])
        self.assertIsInstance(snapshot["lastUpdate"], str)
        self.assertEqual("192.168.1.10", snapshot["dhcpLeases"]["LAN"][0]["ip"])

    async def test_saved_state_never_contains_secret(self) -> None:
        await self.session.connect(self.params)
        self.debug_log.record("info", f"retrying with key {SECRET}", payload={"key": SECRET})

        with tempfile.TemporaryDirectory() as tmp:
            path = self.session.save(Path(tmp) / "state.json")
            text = path.read_text(encoding="utf-8")

        self.assertNotIn(SECRET, text)
        state = json.loads(text)[STATE_KEY]
        self.assertEqual(REDACTED, state["connectionParams"]["secret_key"])

    async def test_save_uses_configured_state_path(self) -> None:
        await self.session.connect(self.params)

        with self.assertRaises(ValueError):
            self.session.save()

        with tempfile.TemporaryDirectory() as tmp:
            self.session.state_path = Path(tmp) / "state" / "session.json"
            path = self.session.save()

            self.assertEqual(self.session.state_path, path)
            self.assertTrue(path.exists())


if __name__ == "__main__":
    unittest.main()
