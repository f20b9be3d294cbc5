"""Prompt templates for each enrichment capability."""

from __future__ import annotations

SUMMARIZE_SYSTEM_PROMPT = """\
You are an expert M&A analyst. Your job is to summarize documents for deal teams.
Focus on: key terms, obligations, risks, deadlines, and critical decision points.
Keep summaries executive-ready: 2-3 sentences maximum."""

SUMMARIZE_PROMPT = """\
Summarize this M&A document:

Document: {name}
Content: {content}

Provide a concise summary highlighting the most important information for deal leads."""

RISKS_SYSTEM_PROMPT = """\
You are a risk detection AI for M&A deals.
Identify potential risks, red flags, and exceptional clauses.
Focus on financial liabilities, legal constraints, compliance issues and deal-breakers."""

RISKS_PROMPT = """\
Analyze this M&A document for risks:

Document: {name}
Content: {content}

Identify up to 5 most significant risks. Return JSON only:
{{
  "risks": [
    {{
      "title": "<brief description>",
      "severity": "low" | "medium" | "high",
      "citation": "<direct quote from the document>",
      "explanation": "<why this is a risk>"
    }}
  ]
}}"""

CLASSIFY_SYSTEM_PROMPT = """\
You are a document classifier for M&A deals.
Classify documents into workstreams: Legal, HR, Finance, IT, Ops.
Base your decision on document content and name."""

CLASSIFY_PROMPT = """\
Classify this document:

Document: {name}
Content Preview: {content}

Return JSON only:
{{
  "workstream": "Legal" | "HR" | "Finance" | "IT" | "Ops",
  "confidence": <integer 0-100>,
  "reasoning": "<brief explanation>"
}}"""

SENTIMENT_SYSTEM_PROMPT = """\
You are an email analyzer for M&A deals.
Detect blockers, waiting conditions, review requests, risks and positive progress.

Sentiment categories:
- positive: progress, approvals, confirmations
- neutral: general updates, information sharing
- risk: concerns, delays, issues
- blocker: explicit blockers, dependencies, waiting for action

A blocker is something preventing deal progress that requires action."""

SENTIMENT_PROMPT = """\
Analyze this email:

Subject: {subject}
From: {sender}
Content: {content}

Return JSON only:
{{
  "sentiment": "positive" | "neutral" | "risk" | "blocker",
  "is_blocker": true | false,
  "blocker_reason": "<explanation if blocker, otherwise null>",
  "key_points": ["<point 1>", "<point 2>", "<point 3>"]
}}"""

THREAD_BLOCKER_SYSTEM_PROMPT = """\
You are a blocker detection AI for M&A deals.
Identify explicit blockers: waiting for approval, pending documents, delayed reviews."""

THREAD_MESSAGE_TEMPLATE = """\
Email {index}:
Date: {date}
From: {sender}
Subject: {subject}
Snippet: {snippet}"""

THREAD_BLOCKER_PROMPT = """\
Analyze this email thread for blockers:

{thread}

Return JSON only:
{{
  "has_blocker": true | false,
  "blocker_title": "<brief description if a blocker exists, otherwise null>",
  "age_in_days": <estimated days since the blocker started, or null>,
  "workstream": "Legal" | "HR" | "Finance" | "IT" | "Ops" | null,
  "participants": ["<email addresses involved>"]
}}"""
