"""SQLAlchemy persistence for the mastery ledger."""
