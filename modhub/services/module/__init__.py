from modhub.services.module.store import ModuleStore

__all__ = ["ModuleStore"]
