"""Pure domain logic: money rounding, pricing rules, status rules, clock."""
