"""Repository collaborators: change enumeration, file access and configuration."""
