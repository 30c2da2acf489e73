"""HTTP trigger API."""
