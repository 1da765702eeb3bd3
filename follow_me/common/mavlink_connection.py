#!/usr/bin/env python3
"""
mavlink_connection.py - MAVLink Connection Settings

Turns the follow-me command line into a MAVSDK connection URL. An explicit
URL (positional argument or FOLLOW_CONNECTION_URL) is used as given;
otherwise the URL is built from the TCP / UDP / UART settings.

Connection URL formats:
    - TCP:    tcp://[server_host][:server_port]
    - UDP:    udp://[bind_host][:bind_port]  (udpin:// on current MAVSDK)
    - Serial: serial:///path/to/serial/dev[:baudrate]

Usage:
    config = ConnectionConfig.from_args(connection_url="udpin://0.0.0.0:14540")
    config = ConnectionConfig.from_args(connection_type="tcp", tcp_host="px4-sitl")
    conn_str = config.get_connection_string()

Environment Variables (FOLLOW_ + field name):
    FOLLOW_CONNECTION_URL, FOLLOW_CONNECTION_TYPE (tcp, udp or uart),
    FOLLOW_TCP_HOST, FOLLOW_TCP_PORT, FOLLOW_UDP_HOST, FOLLOW_UDP_PORT,
    FOLLOW_UART_DEVICE, FOLLOW_UART_BAUD
"""

import logging
import os
from dataclasses import dataclass, fields
from enum import Enum
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

ENV_PREFIX = "FOLLOW_"

# URL schemes accepted by MAVSDK's add_any_connection
SUPPORTED_SCHEMES = ("tcp", "tcpin", "tcpout", "udp", "udpin", "udpout", "serial")

COMMON_BAUD_RATES = (9600, 19200, 38400, 57600, 115200, 230400, 460800, 921600)

CONNECTION_URL_USAGE = """\
Connection URL format should be :
 For TCP : tcp://[server_host][:server_port]
 For UDP : udp://[bind_host][:bind_port]
 For Serial : serial:///path/to/serial/dev[:baudrate]
For example, to connect to the simulator use URL: udp://:14540"""


class ConnectionType(Enum):
    """Link used when no explicit URL is given."""
    UART = "uart"
    UDP = "udp"
    TCP = "tcp"


def is_valid_connection_url(url: str) -> bool:
    """
    Check that a connection URL uses a scheme MAVSDK understands.

    Args:
        url: Connection URL, e.g. "udp://:14540".

    Returns:
        bool: True if the scheme is supported and something follows "://".
    """
    if not url or "://" not in url:
        return False
    scheme, _, rest = url.partition("://")
    return scheme.lower() in SUPPORTED_SCHEMES and bool(rest)


def _parse_connection_type(value: str, fallback: ConnectionType) -> ConnectionType:
    try:
        return ConnectionType(value.lower())
    except ValueError:
        logger.warning(f"Unknown connection type '{value}', using {fallback.value}")
        return fallback


@dataclass
class ConnectionConfig:
    """
    MAVLink connection settings.

    Attributes:
        connection_type: Link used when connection_url is not set.
        connection_url: Explicit URL; when set it is used verbatim.
        uart_device: Serial device path.
        uart_baud: Serial baud rate.
        udp_host: Listen address; PX4 SITL publishes on udp 14540.
        udp_port: Listen port.
        tcp_host: Host to connect to.
        tcp_port: Port to connect to.
    """
    connection_type: ConnectionType = ConnectionType.UDP
    connection_url: Optional[str] = None
    uart_device: str = "/dev/ttyAMA0"
    uart_baud: int = 57600
    udp_host: str = "0.0.0.0"
    udp_port: int = 14540
    tcp_host: str = "localhost"
    tcp_port: int = 5760

    @classmethod
    def from_env(cls) -> "ConnectionConfig":
        """
        Create configuration from FOLLOW_* environment variables.

        Returns:
            ConnectionConfig: Defaults overridden by whatever is set.
        """
        config = cls()
        for f in fields(cls):
            env_name = ENV_PREFIX + f.name.upper()
            raw = os.environ.get(env_name)
            if not raw:
                continue
            if f.name == "connection_type":
                config.connection_type = _parse_connection_type(raw, ConnectionType.UDP)
            elif f.type is int:
                try:
                    setattr(config, f.name, int(raw))
                except ValueError:
                    logger.warning(f"Ignoring invalid {env_name}={raw!r}")
            else:
                setattr(config, f.name, raw)
        return config

    @classmethod
    def from_args(cls, **overrides) -> "ConnectionConfig":
        """
        Create configuration from the environment, then apply CLI values.

        Args:
            **overrides: Field values; None means "not given on the command line".

        Returns:
            ConnectionConfig: Configuration with overrides applied.
        """
        config = cls.from_env()
        for name, value in overrides.items():
            if value is None:
                continue
            if name == "connection_type":
                value = _parse_connection_type(value, config.connection_type)
            setattr(config, name, value)
        return config

    @property
    def endpoint(self) -> Tuple[str, int]:
        """(host, port) for the TCP or UDP link."""
        if self.connection_type == ConnectionType.TCP:
            return self.tcp_host, self.tcp_port
        return self.udp_host, self.udp_port

    def get_connection_string(self) -> str:
        """
        Build the MAVSDK connection string.

        Returns:
            str: connection_url if set, else a serial://, tcp:// or udpin:// URL.
        """
        if self.connection_url:
            return self.connection_url
        if self.connection_type == ConnectionType.UART:
            return f"serial://{self.uart_device}:{self.uart_baud}"
        host, port = self.endpoint
        if self.connection_type == ConnectionType.TCP:
            return f"tcp://{host}:{port}"
        # udp:// is deprecated in MAVSDK, udpin:// listens for the vehicle
        return f"udpin://{host}:{port}"

    def __str__(self) -> str:
        if self.connection_url:
            return f"URL: {self.connection_url}"
        if self.connection_type == ConnectionType.UART:
            return f"UART: {self.uart_device} @ {self.uart_baud} baud"
        host, port = self.endpoint
        return f"{self.connection_type.name}: {host}:{port}"


_DEFAULTS = ConnectionConfig()


def check_serial_port(device: str) -> dict:
    """
    Check that a serial device exists and can be opened read/write.

    Returns:
        dict: device, exists, and error (None when usable).
    """
    if not os.path.exists(device):
        return {"device": device, "exists": False, "error": "Device does not exist"}

    error = None
    if not os.access(device, os.R_OK | os.W_OK):
        error = (
            "Permission denied. Add user to dialout group: "
            "sudo usermod -aG dialout $USER"
        )
    return {"device": device, "exists": True, "error": error}


def validate_config(config: ConnectionConfig) -> dict:
    """
    Validate connection configuration.

    Args:
        config: ConnectionConfig to validate.

    Returns:
        dict: 'valid' bool plus 'errors' and 'warnings' lists.
    """
    errors = []
    warnings = []

    if config.connection_url:
        if not is_valid_connection_url(config.connection_url):
            errors.append(f"Unsupported connection URL: {config.connection_url}")
    elif config.connection_type == ConnectionType.UART:
        status = check_serial_port(config.uart_device)
        if not status["exists"]:
            errors.append(f"Serial device not found: {config.uart_device}")
        elif status["error"]:
            errors.append(status["error"])
        if config.uart_baud not in COMMON_BAUD_RATES:
            warnings.append(
                f"Non-standard baud rate: {config.uart_baud}. "
                f"Common rates: {list(COMMON_BAUD_RATES)}"
            )
    else:
        label = config.connection_type.name
        host, port = config.endpoint
        if not host:
            errors.append(f"{label} host not specified")
        if not 1 <= port <= 65535:
            errors.append(f"Invalid {label} port number: {port}")

    return {"valid": not errors, "errors": errors, "warnings": warnings}


# (flag, type, help) for the per-link options; dest and env name follow the flag
_LINK_OPTIONS = (
    ("--uart-device", str, "Serial device for UART mode"),
    ("--uart-baud", int, "Baud rate for UART mode"),
    ("--udp-host", str, "Listen address for UDP mode"),
    ("--udp-port", int, "Listen port for UDP mode"),
    ("--tcp-host", str, "Host for TCP mode"),
    ("--tcp-port", int, "Port for TCP mode"),
)


def add_connection_arguments(parser) -> None:
    """
    Add the positional connection URL and a "Connection Options" group.

    Args:
        parser: argparse.ArgumentParser to add arguments to.
    """
    parser.add_argument(
        "connection_url",
        nargs="?",
        default=None,
        help="MAVSDK connection URL, e.g. udp://:14540 or serial:///dev/ttyUSB0:57600. "
             "Overrides the connection options below."
    )

    conn_group = parser.add_argument_group("Connection Options")
    conn_group.add_argument(
        "--connection-type", "-c",
        choices=[t.value for t in ConnectionType],
        default=None,
        help="Link to use when no URL is given. "
             "Default: FOLLOW_CONNECTION_TYPE env or 'udp'"
    )
    for flag, arg_type, text in _LINK_OPTIONS:
        field_name = flag[2:].replace("-", "_")
        conn_group.add_argument(
            flag,
            type=arg_type,
            default=None,
            help=f"{text}. Default: {ENV_PREFIX}{field_name.upper()} env "
                 f"or {getattr(_DEFAULTS, field_name)!r}"
        )


def print_usage(bin_name: str) -> None:
    """Print the connection URL usage text."""
    print(f"Usage : {bin_name} <connection_url>")
    print(CONNECTION_URL_USAGE)


def print_connection_info(config: ConnectionConfig) -> None:
    """Print the resolved connection settings."""
    print("=" * 50)
    print("MAVLink Connection")
    print("=" * 50)
    print(f"  {config}")

    if not config.connection_url and config.connection_type == ConnectionType.UART:
        status = check_serial_port(config.uart_device)
        if not status["exists"]:
            print("  Port Status: NOT FOUND")
        else:
            print(f"  Port Status: {status['error'] or 'OK'}")

    print(f"  Connection String: {config.get_connection_string()}")
    print("=" * 50)
