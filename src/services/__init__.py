"""Infrastructure services and external collaborator adapters."""
