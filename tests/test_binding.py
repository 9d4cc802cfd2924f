"""Tests for meter.binding -- interface name to local address."""

import socket
import unittest
from types import SimpleNamespace
from unittest import mock

from meter.binding import local_addr, resolve_interface
from meter.errors import TransportError, TransportErrorKind

_ADDRS = {
    "eth0": [
        SimpleNamespace(family=socket.AF_INET6, address="fe80::1%eth0"),
        SimpleNamespace(family=socket.AF_INET, address="192.168.1.20"),
    ],
    "wg0": [SimpleNamespace(family=socket.AF_INET6, address="fd00::2%wg0")],
    "down0": [SimpleNamespace(family=-1, address="00:11:22:33:44:55")],
}


class TestResolveInterface(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch("meter.binding.psutil.net_if_addrs", return_value=_ADDRS)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_unset(self):
        self.assertIsNone(resolve_interface(None))
        self.assertIsNone(resolve_interface(""))

    def test_literal_address(self):
        self.assertEqual(resolve_interface("10.0.0.5"), "10.0.0.5")
        self.assertEqual(resolve_interface("::1"), "::1")

    def test_prefers_ipv4(self):
        self.assertEqual(resolve_interface("eth0"), "192.168.1.20")

    def test_ipv6_zone_stripped(self):
        self.assertEqual(resolve_interface("wg0"), "fd00::2")

    def test_unknown_interface(self):
        with self.assertRaises(TransportError) as ctx:
            resolve_interface("nope0")
        self.assertIs(ctx.exception.kind, TransportErrorKind.CONNECTION_REFUSED)

    def test_interface_without_ip(self):
        with self.assertRaises(TransportError):
            resolve_interface("down0")

    def test_local_addr_tuple(self):
        self.assertEqual(local_addr("eth0"), ("192.168.1.20", 0))
        self.assertIsNone(local_addr(None))


if __name__ == "__main__":
    unittest.main()
