"""Hive: assignment allocation and consensus for crowdsourcing projects."""

__version__ = "0.1.0"
