"""Infrastructure layer: runtime clients, console I/O, config and signals."""
