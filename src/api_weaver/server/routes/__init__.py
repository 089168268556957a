"""HTTP route modules; create_app decides which ones a service mounts."""
