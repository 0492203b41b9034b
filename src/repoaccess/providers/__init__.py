"""Per-provider provisioning passes.

Each provider module turns accepted access requests into federated
identities, service identities and secret records through a collaborator
backend (see :mod:`repoaccess.providers.base`).
"""
