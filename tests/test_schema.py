"""
Tests for schema validation.
"""

import pytest
from jobstats.schema import validate_application, validate_posting


class TestValidatePosting:
    """Test posting validation."""

    def test_valid_posting_minimal(self):
        """A URL alone is a valid posting."""
        assert validate_posting({"url": "https://jobs.example.com/1"}) == []

    def test_valid_posting_full(self, raw_posting):
        """A full raw posting should have no errors."""
        raw_posting["keywords"] = ["siem"]
        raw_posting["salary"] = {"min": 50000, "max": 60000}
        assert validate_posting(raw_posting) == []

    def test_missing_url(self):
        """Missing url should error."""
        errors = validate_posting({"title": "Analyst"})
        assert errors == ["Missing required field: url"]

    def test_blank_url(self):
        """Whitespace url should error."""
        errors = validate_posting({"url": "   "})
        assert any("non-empty" in err for err in errors)

    def test_invalid_url(self):
        """Relative URL should error."""
        errors = validate_posting({"url": "not-a-url"})
        assert any("url" in err.lower() for err in errors)

    def test_wrong_types(self):
        """Optional fields of the wrong type are reported individually."""
        errors = validate_posting({
            "url": "https://jobs.example.com/1",
            "title": 42,
            "keywords": "siem",
            "salary": "50k",
        })
        assert len(errors) == 3
        assert any("title" in err for err in errors)
        assert any("keywords" in err for err in errors)
        assert any("salary" in err for err in errors)

    def test_non_dict(self):
        """Non-object input should error."""
        assert validate_posting(["https://jobs.example.com/1"]) == ["Posting must be an object"]


class TestValidateApplication:
    """Test click event validation."""

    def test_valid_event(self):
        """Event with a job URL is valid."""
        assert validate_application({"jobUrl": "https://jobs.example.com/1", "title": "Analyst"}) == []

    def test_missing_job_url(self):
        """jobUrl is required."""
        assert validate_application({"title": "Analyst"}) == ["Missing required field: jobUrl"]

    def test_invalid_job_url(self):
        """jobUrl must be absolute."""
        errors = validate_application({"jobUrl": "/jobs/1"})
        assert any("absolute" in err for err in errors)

    def test_string_fields(self):
        """Optional descriptive fields must be strings."""
        errors = validate_application({"jobUrl": "https://jobs.example.com/1", "company": ["Acme"]})
        assert any("company" in err for err in errors)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
