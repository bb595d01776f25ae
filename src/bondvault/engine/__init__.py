"""Strategy core: fees, position ledger, bond lifecycle, reserve queue, vault."""
