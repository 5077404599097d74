"""Master/slave link protocol over a shared 9-bit multidrop serial bus, with an in-memory bus, clock and EEPROM for simulation."""

__version__ = "0.1.0"