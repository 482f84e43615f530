from udplink.address import (
    Address,
    format_ip,
    host_to_network32,
    network_to_host32,
    parse_address,
)
from udplink.bridge import (
    STATUS_ERROR,
    STATUS_NO_DATA,
    STATUS_OVERSIZED,
    Callbacks,
    DatagramHandler,
    EventBridge,
    register,
)
from udplink.config import (
    BenchConfig,
    EndpointConfig,
    UdplinkConfig,
    discover_config,
    load_config,
)
from udplink.endpoint import MAX_PAYLOAD, Mode, UdpEndpoint
from udplink.errors import (
    AddressError,
    CallbackError,
    EndpointClosedError,
    EndpointIOError,
    InvalidDestinationError,
    NoDataError,
    RegistrationError,
    SubsystemError,
    UdpError,
    ValidationError,
)
from udplink.poller import AsyncioPoller, Poller, PollerCallbacks, SelectorPoller
from udplink.subsystem import NetworkSubsystem, SubsystemState

__all__ = [
    "MAX_PAYLOAD",
    "STATUS_ERROR",
    "STATUS_NO_DATA",
    "STATUS_OVERSIZED",
    "Address",
    "AddressError",
    "AsyncioPoller",
    "BenchConfig",
    "CallbackError",
    "Callbacks",
    "DatagramHandler",
    "EndpointClosedError",
    "EndpointConfig",
    "EndpointIOError",
    "EventBridge",
    "InvalidDestinationError",
    "Mode",
    "NetworkSubsystem",
    "NoDataError",
    "Poller",
    "PollerCallbacks",
    "RegistrationError",
    "SelectorPoller",
    "SubsystemError",
    "SubsystemState",
    "UdpEndpoint",
    "UdpError",
    "UdplinkConfig",
    "ValidationError",
    "discover_config",
    "format_ip",
    "host_to_network32",
    "load_config",
    "network_to_host32",
    "parse_address",
    "register",
]
