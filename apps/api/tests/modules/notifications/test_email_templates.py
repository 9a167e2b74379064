"""
Tests for guardian email content.

send_email is patched so nothing is sent.
"""

from unittest.mock import AsyncMock, patch

import pytest

from maktab.core import email

SEND = "maktab.core.email.send_email"


class TestPaymentLinkEmail:
    @pytest.mark.asyncio
    async def test_multiple_children_with_discount(self):
        with patch(SEND, new=AsyncMock(return_value=True)) as send:
            await email.send_payment_link(
                to_email="parent@example.com",
                guardian_name="Amina Patel",
                student_names=["Yusuf", "Ibrahim", "Musa"],
                maktab="boys",
                checkout_url="https://checkout.test/cs_1",
                discount_applied=True,
                has_other_maktab=False,
            )

        kwargs = send.await_args.kwargs
        assert kwargs["subject"] == "Complete Payment - Boys Maktab (3 children) (Sibling Discount Applied)"
        assert "https://checkout.test/cs_1" in kwargs["html_content"]
        assert "24 hours" in kwargs["html_content"]
        assert "separate" not in kwargs["html_content"]

    @pytest.mark.asyncio
    async def test_other_maktab_notice_and_escaping(self):
        with patch(SEND, new=AsyncMock(return_value=True)) as send:
            await email.send_payment_link(
                to_email="parent@example.com",
                guardian_name="<b>Amina</b>",
                student_names=["Maryam"],
                maktab="girls",
                checkout_url="https://checkout.test/cs_2",
                discount_applied=False,
                has_other_maktab=True,
            )

        kwargs = send.await_args.kwargs
        assert kwargs["subject"] == "Complete Payment - Girls Maktab - Maryam"
        assert "Boys Maktab" in kwargs["html_content"]
        assert "<b>Amina</b>" not in kwargs["html_content"]


class TestDecisionEmails:
    @pytest.mark.asyncio
    async def test_confirmation_across_maktabs_uses_generic_label(self):
        with patch(SEND, new=AsyncMock(return_value=True)) as send:
            await email.send_registration_confirmation(
                to_email="parent@example.com",
                guardian_name="Amina Patel",
                student_names=["Yusuf", "Maryam"],
                maktab=None,
            )

        assert "Masjid Irshad Maktab" in send.await_args.kwargs["html_content"]

    @pytest.mark.asyncio
    async def test_rejection_includes_reason(self):
        with patch(SEND, new=AsyncMock(return_value=True)) as send:
            await email.send_registration_rejection(
                to_email="parent@example.com",
                guardian_name="Amina Patel",
                student_name="Yusuf Patel",
                reason="Class is full",
            )

        kwargs = send.await_args.kwargs
        assert kwargs["subject"] == "Registration Update - Yusuf Patel - Masjid Irshad"
        assert "Class is full" in kwargs["html_content"]

    @pytest.mark.asyncio
    async def test_missing_api_key_logs_instead_of_sending(self):
        with patch.object(email.resend, "api_key", None):
            assert await email.send_email("p@example.com", "Subject", "<p>Hi</p>") is True
