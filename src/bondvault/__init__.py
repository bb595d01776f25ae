"""Bond vault workbench: rebase/bond strategy accounting with simulated venues."""

__version__ = "0.1.0"
