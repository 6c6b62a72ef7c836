"""Seed records for demo mode, when no database is configured."""

from compass_agent.domain.models.tooling import ChunkResult
from compass_agent.infrastructure.persistence.memory_store import InMemoryCrmStore, InMemoryKnowledgeSearch


ADVISOR_THANDI_ID = "6f1c2a9e-4a1b-4c3e-9d2f-0a1b2c3d4e01"
ADVISOR_JOHANNES_ID = "6f1c2a9e-4a1b-4c3e-9d2f-0a1b2c3d4e02"
CUSTOMER_MARIA_ID = "3b9d7e10-5c2a-4f6b-8e1d-1a2b3c4d5e01"
CUSTOMER_PETRUS_ID = "3b9d7e10-5c2a-4f6b-8e1d-1a2b3c4d5e02"

ADVISORS = [
    {
        "id": ADVISOR_THANDI_ID,
        "advisor_number": "ADV-001",
        "first_name": "Thandi",
        "last_name": "Nghipondoka",
        "email": "thandi.nghipondoka@example.com",
        "phone": "+264 61 000 101",
        "specialization": "Life Insurance",
        "experience_years": 12,
        "region": "Khomas",
        "branch": "Windhoek Central",
        "active_clients": 2,
        "satisfaction_score": 4.8,
    },
    {
        "id": ADVISOR_JOHANNES_ID,
        "advisor_number": "ADV-002",
        "first_name": "Johannes",
        "last_name": "Amutenya",
        "email": "johannes.amutenya@example.com",
        "phone": "+264 61 000 102",
        "specialization": "Retirement Planning",
        "experience_years": 8,
        "region": "Erongo",
        "branch": "Swakopmund",
        "active_clients": 0,
        "satisfaction_score": 4.5,
    },
]

CUSTOMERS = [
    {
        "id": CUSTOMER_MARIA_ID,
        "customer_number": "CUST-001",
        "first_name": "Maria",
        "last_name": "Shikongo",
        "email": "maria.shikongo@example.com",
        "phone_primary": "+264 81 000 201",
        "segment": "Mass Affluent",
        "monthly_income": 18000,
        "engagement_score": 82,
        "primary_advisor_id": ADVISOR_THANDI_ID,
    },
    {
        "id": CUSTOMER_PETRUS_ID,
        "customer_number": "CUST-002",
        "first_name": "Petrus",
        "last_name": "Haufiku",
        "email": "petrus.haufiku@example.com",
        "phone_primary": "+264 81 000 202",
        "segment": "Young Professional",
        "monthly_income": 12000,
        "engagement_score": 64,
        "primary_advisor_id": ADVISOR_THANDI_ID,
    },
]

POLICIES = [
    {
        "id": "pol-0001",
        "customer_id": CUSTOMER_MARIA_ID,
        "policy_number": "POL-10001",
        "product_type": "Life Insurance",
        "product_subtype": "Term Life",
        "status": "Active",
        "coverage_amount": 1500000,
        "premium_amount": 450,
        "start_date": "2021-03-01",
        "renewal_date": "2026-03-01",
    },
    {
        "id": "pol-0002",
        "customer_id": CUSTOMER_MARIA_ID,
        "policy_number": "POL-10002",
        "product_type": "Funeral Cover",
        "product_subtype": "Family Plan",
        "status": "Active",
        "coverage_amount": 50000,
        "premium_amount": 120,
        "start_date": "2022-07-15",
        "renewal_date": "2026-07-15",
    },
    {
        "id": "pol-0003",
        "customer_id": CUSTOMER_PETRUS_ID,
        "policy_number": "POL-10003",
        "product_type": "Retirement Annuity",
        "product_subtype": "Flexible Contribution",
        "status": "Active",
        "coverage_amount": 0,
        "premium_amount": 800,
        "start_date": "2023-01-01",
    },
]

CLAIMS = [
    {
        "id": "clm-0001",
        "customer_id": CUSTOMER_MARIA_ID,
        "claim_number": "CLM-20001",
        "policy_id": "pol-0002",
        "claim_type": "Funeral",
        "status": "Approved",
        "incident_date": "2024-11-02",
        "approved_amount": 50000,
        "paid_amount": 50000,
        "processing_time_days": 4,
    },
]

INTERACTIONS = [
    {
        "id": "int-0001",
        "customer_id": CUSTOMER_MARIA_ID,
        "advisor_id": ADVISOR_THANDI_ID,
        "interaction_number": "INT-30001",
        "interaction_type": "Call",
        "channel": "Phone",
        "direction": "Outbound",
        "subject": "Annual policy review",
        "content": "Reviewed term life cover and discussed increasing coverage.",
        "sentiment": "Positive",
        "created_at": "2025-02-10T09:30:00+00:00",
    },
]

TASKS = [
    {
        "id": "tsk-0001",
        "advisor_id": ADVISOR_THANDI_ID,
        "task_number": "TSK-40001",
        "customer_number": "CUST-001",
        "customer_name": "Maria Shikongo",
        "task_type": "Follow-up",
        "title": "Send coverage increase quote",
        "priority": "High",
        "status": "Open",
        "due_date": "2025-03-01",
    },
    {
        "id": "tsk-0002",
        "advisor_id": ADVISOR_THANDI_ID,
        "task_number": "TSK-40002",
        "customer_number": "CUST-002",
        "customer_name": "Petrus Haufiku",
        "task_type": "Onboarding",
        "title": "Complete retirement annuity onboarding",
        "priority": "Medium",
        "status": "Completed",
        "due_date": "2024-12-15",
    },
]

DOCUMENTS = [
    {
        "document_number": "DOC-001",
        "title": "Claim Form - Funeral Cover",
        "category": "claims",
        "document_type": "form",
        "description": "Form for submitting a funeral cover claim.",
        "is_active": True,
    },
    {
        "document_number": "DOC-002",
        "title": "Life Insurance Product Guide",
        "category": "products",
        "document_type": "guide",
        "description": "Overview of term and whole life insurance options.",
        "is_active": True,
    },
]

CHUNKS = [
    ChunkResult(
        chunk_id="chunk-0001",
        document_id="kb-001",
        content=(
            "Term life insurance pays a lump sum to your beneficiaries if you pass away during "
            "the policy term. A common guideline is cover of ten to fifteen times monthly income."
        ),
        document_title="Life Insurance Product Guide",
        document_source="products/life-insurance-guide.md",
    ),
    ChunkResult(
        chunk_id="chunk-0002",
        document_id="kb-002",
        content=(
            "Funeral claims are processed within five working days once the claim form, "
            "a certified death certificate and the beneficiary's ID are received."
        ),
        document_title="Claims Process",
        document_source="claims/claims-process.md",
    ),
]


def build_demo_crm() -> InMemoryCrmStore:
    return InMemoryCrmStore(
        customers=CUSTOMERS,
        advisors=ADVISORS,
        policies=POLICIES,
        claims=CLAIMS,
        interactions=INTERACTIONS,
        tasks=TASKS,
    )


def build_demo_knowledge() -> InMemoryKnowledgeSearch:
    return InMemoryKnowledgeSearch(chunks=CHUNKS, documents=DOCUMENTS)
