"""Event indexer and derived-state engine for the ForgeInventory contract."""

__version__ = "0.1.0"
