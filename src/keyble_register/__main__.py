"""
Entry point for running the registration tool as a module.

Usage:
    python -m keyble_register --qr_code_data M001A22...
    python -m keyble_register < key_cards.txt
    python -m keyble_register -n "Front door" -v
"""

from .cli import run

if __name__ == "__main__":
    run()
