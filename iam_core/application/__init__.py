"""Application services: administration of roles, groups, principals and advisor assignments."""
