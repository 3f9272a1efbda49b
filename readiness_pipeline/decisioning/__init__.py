"""
DoR decisioning layer.

Pure, deterministic scoring of issues against an ordered, weighted rule
set, plus the status state machine that turns scores into statuses.
"""
from .rules import Rule, RuleSet, get_default_rules, get_default_ruleset
from .rule_engine import (
    MissingItem,
    RuleResult,
    ScoreResult,
    boost_score,
    explain_score,
    missing_items,
    sanitize_pattern,
    score,
    score_issue,
)
from .state_machine import IssueStateMachine, IssueStatus
from .explainer import SUGGESTED_FIXES, build_dor_comment, build_qa_comment


__all__ = [
    'Rule',
    'RuleSet',
    'MissingItem',
    'RuleResult',
    'ScoreResult',
    'IssueStateMachine',
    'IssueStatus',
    'SUGGESTED_FIXES',
    'boost_score',
    'build_dor_comment',
    'build_qa_comment',
    'explain_score',
    'get_default_rules',
    'get_default_ruleset',
    'missing_items',
    'sanitize_pattern',
    'score',
    'score_issue',
]
