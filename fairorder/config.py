"""
Configuration for Peers & Relay Router
"""
from typing import Dict, Any
import os
from pathlib import Path


def _load_env_value(*names: str) -> str:
    """
    Load a setting from environment variables or the root .env file.
    The first name found wins; supports both `KEY=value` and `KEY: value`.
    """
    for key in names:
        value = os.getenv(key)
        if value:
            return value.strip()

    env_path = Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        with env_path.open("r", encoding="utf-8") as env_file:
            for raw_line in env_file:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue

                if "=" in line and (":" not in line or line.index("=") < line.index(":")):
                    key, val = line.split("=", 1)
                elif ":" in line:
                    key, val = line.split(":", 1)
                else:
                    continue

                key = key.strip()
                val = val.strip().strip('"').strip("'")
                if key in names:
                    return val

    return ""


def _load_flag(*names: str) -> bool:
    return _load_env_value(*names).lower() in ("1", "true", "yes", "on")


# Protocol Configuration
PROTOCOL_CONFIG: Dict[str, Any] = {
    # Peer count bounds (ranks are carried in one byte per card)
    "min_peers": 2,
    "max_peers": 256,

    # Commutative cipher realization: "sra" or "keystream" (AES-CTR, cards
    # stay traceable by their layer nonces)
    "cipher": _load_env_value("FAIRORDER_CIPHER") or "sra",

    # Print every message in/out per peer
    "debug": _load_flag("FAIRORDER_DEBUG", "FAIRORDER-DEBUG"),

    # Deadline for one consensus run (seconds)
    "run_timeout": 60,
}


# Network Configuration
NETWORK_CONFIG: Dict[str, Any] = {
    # Relay router server
    "router_host": "0.0.0.0",
    "router_port": 8700,

    # Address peers dial to reach the relay router
    "router_address": _load_env_value("FAIRORDER_ROUTER_ADDRESS") or "http://localhost:8700",

    "connection_timeout": 10,

    # Long-poll window for /receive (client asks for, server clamps to max)
    "receive_poll_wait": 20,
    "max_receive_wait": 30,

    # How long a joining peer waits for the others to register
    "peer_wait_timeout": 60,
    "peer_wait_interval": 0.25,
}


# Simulated latency for the in-memory router (seconds, normal distribution)
LATENCY_CONFIG: Dict[str, Any] = {
    "mean": 0.04,
    "stddev": 0.02,
}


# Run transcript, one file per run and peer
LOG_CONFIG: Dict[str, Any] = {
    "log_dir": "logs",
    "log_file": "order_{run_id}_peer{peer}.log",
}
