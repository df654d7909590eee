"""
Scripts for DoseLedger
Operator scripts for seeding, scheduled job ticks and legacy data cleanup
"""
