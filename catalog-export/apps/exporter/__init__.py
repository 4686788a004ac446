"""
Exporter App - Resumable Catalog Export

Responsibilities:
- Probe the catalog record count with a single-record request
- Fetch all pages concurrently under a shared rate limit
- Retry transient failures, including IN_PROGRESS polling responses
- Stream records into one JSON array file without buffering the result set
- Persist the last successful run so the next run is incremental

Output:
- <OUTPUT_DIR>/<YYYYMMDD_HHMMSS>_results.json
- lastrun.json cursor: {"orgid": <uuid>, "updatedSince": <ISO-8601>}
"""
