"""Pure domain layer: clock, enums, DTOs, tax and period arithmetic. Zero I/O."""
