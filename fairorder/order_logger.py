"""
Order Logger - Records one peer's consensus run to file
Only logs layer identifiers and outcomes, never key material
"""
import os
from datetime import datetime
from typing import Optional, Sequence

from fairorder.config import LOG_CONFIG


class OrderLogger:
    """Logs consensus events of one peer to file"""

    def __init__(self, run_id: str, self_index: int, log_dir: Optional[str] = None):
        self.run_id = run_id
        self.self_index = self_index
        self.log_dir = log_dir or LOG_CONFIG["log_dir"]
        self.log_file = os.path.join(
            self.log_dir, LOG_CONFIG["log_file"].format(run_id=run_id, peer=self_index)
        )

        os.makedirs(self.log_dir, exist_ok=True)

        # Initialize/clear log file
        with open(self.log_file, 'w', encoding='utf-8') as f:
            f.write("=== Order Consensus Log ===\n")
            f.write(f"Run ID: {run_id}\n")
            f.write(f"Peer: #{self_index}\n")
            f.write(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
            f.write("=" * 50 + "\n\n")

    def log(self, message: str):
        """Write a log message with timestamp"""
        timestamp = datetime.now().strftime('%H:%M:%S')
        with open(self.log_file, 'a', encoding='utf-8') as f:
            f.write(f"[{timestamp}] {message}\n")

    def log_section(self, title: str):
        with open(self.log_file, 'a', encoding='utf-8') as f:
            f.write("\n" + "=" * 50 + "\n")
            f.write(f"{title}\n")
            f.write("=" * 50 + "\n")

    def log_round(self, round_number: int, sender: int, layer: bytes):
        self.log(f"Round {round_number}: peer #{sender} added layer {layer.hex()[:16]}")

    def log_reveal(self, sender: int, identifier: bytes):
        self.log(f"Reveal: peer #{sender} disclosed key {identifier.hex()[:16]}")

    def log_order(self, order: Sequence[int]):
        self.log_section("Gameplay Order")
        for position, peer in enumerate(order, start=1):
            self.log(f"  {position}. Peer #{peer}")
        self.log(f"Ended: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    def log_failure(self, error: Exception):
        self.log_section("Run Failed")
        self.log(f"{type(error).__name__}: {error}")
        self.log(f"Ended: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
