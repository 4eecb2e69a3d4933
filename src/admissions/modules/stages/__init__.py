"""
Stages Module

The stage engine: moves applicants through the fixed competition pipeline
(see pipeline.py) on staff decisions, one at a time or from a spreadsheet.

API Endpoints:
- POST /stages/decisions - Record one decision
- POST /stages/decisions/bulk - Apply decisions in bulk
- GET /stages/decisions/bulk/template - Bulk import columns
- GET /stages/stats - Applicant counts per stage
- GET /stages/applicants - List applicants by stage and status
- GET /stages/applicants/{id} - Current stage
- GET /stages/applicants/{id}/history - Selection history
- GET /stages/pipeline - Pipeline definition

Every decision is appended to selection_records; the applicant's
current_stage column is a cache of the latest record's next_stage.
"""
