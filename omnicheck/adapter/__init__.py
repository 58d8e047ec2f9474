"""Protocol adapter running inside engine workers."""
