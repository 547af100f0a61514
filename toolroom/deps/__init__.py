# Marks `toolroom.deps` as a package so `from toolroom.deps.auth import require_role` resolves.
