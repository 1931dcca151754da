"""HTTP surface for the photo studio."""
