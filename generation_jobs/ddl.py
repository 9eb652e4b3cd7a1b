"""Database schema DDL for generation jobs."""

JOBS_TABLE_DDL = """
CREATE TABLE generation_jobs (
  id               UUID PRIMARY KEY,
  owner_id         TEXT NOT NULL,
  cycle_key        TEXT NOT NULL,

  status           TEXT NOT NULL DEFAULT 'pending'
                   CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
  input_snapshot   JSONB NOT NULL,

  result_reference TEXT,
  error_code       TEXT,
  error_message    TEXT,

  retry_count      INT NOT NULL DEFAULT 0,
  max_retries      INT NOT NULL DEFAULT 3,

  worker_id        TEXT,
  lock_expires_at  TIMESTAMPTZ,

  checkpoint_phase INT NOT NULL DEFAULT 0,
  checkpoint_data  JSONB,

  created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
  started_at       TIMESTAMPTZ,
  completed_at     TIMESTAMPTZ,
  updated_at       TIMESTAMPTZ NOT NULL DEFAULT now(),

  CONSTRAINT generation_jobs_retry_budget
    CHECK (retry_count >= 0 AND retry_count <= max_retries),
  CONSTRAINT generation_jobs_lease_iff_processing
    CHECK ((status = 'processing') = (worker_id IS NOT NULL AND lock_expires_at IS NOT NULL)),
  CONSTRAINT generation_jobs_result_only_when_completed
    CHECK (status = 'completed' OR result_reference IS NULL)
);

-- At most one pending/processing job per owner per cycle
CREATE UNIQUE INDEX uniq_generation_jobs_active_per_cycle
ON generation_jobs (owner_id, cycle_key)
WHERE status IN ('pending', 'processing');

-- Claim scan: oldest pending first
CREATE INDEX idx_generation_jobs_pending_created
ON generation_jobs (created_at)
WHERE status = 'pending';

-- Claim scan: stale leases
CREATE INDEX idx_generation_jobs_processing_lease
ON generation_jobs (lock_expires_at)
WHERE status = 'processing';

CREATE INDEX idx_generation_jobs_owner_created
ON generation_jobs (owner_id, created_at DESC);

-- Retention sweep
CREATE INDEX idx_generation_jobs_terminal_completed
ON generation_jobs (completed_at)
WHERE status IN ('completed', 'failed');
"""
