"""Pure domain values for the billing kernel. Zero I/O."""
