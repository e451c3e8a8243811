"""Utility helpers for the schablone framework."""

from .rerun_logger import RerunLogger

__all__ = ["RerunLogger"]
