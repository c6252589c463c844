"""Services package for mediavault."""
