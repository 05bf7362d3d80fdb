import ipaddress
from typing import Optional

from ..models import Client

# flashver nginx-rtmp reports for its own push/pull relay connections
RELAY_FLASHVER = "ngx-local-relay"

_IPV4_PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


def _parse_address(address: Optional[str]):
    if not address:
        return None
    try:
        return ipaddress.ip_address(address.strip())
    except ValueError:
        return None


def is_relay(client: Client) -> bool:
    return client.flashver == RELAY_FLASHVER


def is_local_relay(client: Client) -> bool:
    """Return True for relay connections originating from this host or the LAN.

    An absent or unparsable address is never treated as local, so such a
    client is counted as a real viewer.
    """
    if not is_relay(client):
        return False
    address = _parse_address(client.address)
    if address is None:
        return False
    if address.version == 6 and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    if address.is_loopback:
        return True
    if address.version == 4:
        return any(address in network for network in _IPV4_PRIVATE_NETWORKS)
    return False
