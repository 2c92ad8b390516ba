"""
migrate-core command-line interface.

Entry point: ``migrate-core`` → :data:`migrate_core.cli.app.app`
"""
