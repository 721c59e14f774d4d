from .seeder import seed_initial_data

__all__ = ["seed_initial_data"]
