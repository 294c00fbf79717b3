"""Services package: the scheduling and compensation core."""
