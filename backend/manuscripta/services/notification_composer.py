"""
状态通知邮件的文案组装（纯函数，无 I/O）。

中文注释:
- 这里只负责 status -> {subject, body} 的映射；投递由 NotificationDispatcher 负责。
- 未覆盖的状态返回 None（即“该状态不发通知”）。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from manuscripta.models.submission import SubmissionStatus, normalize_status

SIGN_OFF = "Best regards,\nEditorial Team"


@dataclass(frozen=True)
class ComposedEmail:
    subject: str
    body: str


def _submitted(title: str, author_name: str, submission_id: str, **_: object) -> ComposedEmail:
    return ComposedEmail(
        subject="Manuscript Submission Received",
        body=(
            f"Dear {author_name},\n\n"
            f'Thank you for submitting your manuscript "{title}" to our journal.\n\n'
            f"Your submission has been received and assigned the ID: {submission_id}\n\n"
            "What happens next:\n"
            "1. Initial screening by our editorial team (3-5 business days)\n"
            "2. Plagiarism and formatting check\n"
            "3. Assignment to peer reviewers if accepted for review\n\n"
            "You can track the status of your submission in your dashboard at any time.\n\n"
            f"{SIGN_OFF}"
        ),
    )


def _under_review(title: str, author_name: str, submission_id: str, **_: object) -> ComposedEmail:
    return ComposedEmail(
        subject="Manuscript Under Peer Review",
        body=(
            f"Dear {author_name},\n\n"
            f'Your manuscript "{title}" (ID: {submission_id}) has passed initial screening '
            "and is now under peer review.\n\n"
            "The review process typically takes 4-6 weeks. We have assigned qualified reviewers "
            "who will evaluate your work based on:\n"
            "- Scientific rigor and methodology\n"
            "- Originality and significance\n"
            "- Clarity of presentation\n"
            "- Relevance to the journal's scope\n\n"
            "You will be notified once the reviews are complete.\n\n"
            f"{SIGN_OFF}"
        ),
    )


def _revision_required(title: str, author_name: str, submission_id: str, **kw: object) -> ComposedEmail:
    revision_days = kw.get("revision_days") or 60
    return ComposedEmail(
        subject="Revision Required for Your Manuscript",
        body=(
            f"Dear {author_name},\n\n"
            f'The peer review of your manuscript "{title}" (ID: {submission_id}) is complete.\n\n'
            "The reviewers have recommended revisions before the manuscript can be accepted for "
            "publication. Please log into your dashboard to view the detailed reviewer comments "
            "and submit your revised manuscript.\n\n"
            "Please address all reviewer comments and provide a detailed response letter "
            "explaining how you have addressed each point.\n\n"
            f"The revision deadline is {revision_days} days from today.\n\n"
            f"{SIGN_OFF}"
        ),
    )


def _accepted(title: str, author_name: str, submission_id: str, **_: object) -> ComposedEmail:
    return ComposedEmail(
        subject="Manuscript Accepted for Publication!",
        body=(
            f"Dear {author_name},\n\n"
            f'Congratulations! Your manuscript "{title}" (ID: {submission_id}) has been accepted '
            "for publication.\n\n"
            "Next steps:\n"
            "1. Pay the Article Processing Charge (APC)\n"
            "2. Review and approve the final proof\n"
            "3. Your article will be published online\n\n"
            "Please log into your dashboard to complete the payment process.\n\n"
            f"{SIGN_OFF}"
        ),
    )


def _published(title: str, author_name: str, submission_id: str, **kw: object) -> ComposedEmail:
    doi = kw.get("doi") or "[Will be assigned]"
    published_on = kw.get("publication_date")
    date_line = f"- Publication Date: {published_on.isoformat()}\n" if isinstance(published_on, date) else ""
    return ComposedEmail(
        subject="Your Article Has Been Published!",
        body=(
            f"Dear {author_name},\n\n"
            f'We are pleased to inform you that your article "{title}" has been published and is '
            "now available online.\n\n"
            "Your article details:\n"
            f"- DOI: {doi}\n"
            f"{date_line}\n"
            "The article is now freely accessible to readers worldwide and will be indexed in "
            "major academic databases.\n\n"
            "Thank you for choosing our journal for your research publication.\n\n"
            f"{SIGN_OFF}"
        ),
    )


def _rejected(title: str, author_name: str, submission_id: str, **_: object) -> ComposedEmail:
    return ComposedEmail(
        subject="Manuscript Decision - Not Accepted",
        body=(
            f"Dear {author_name},\n\n"
            "After careful consideration and peer review, we regret to inform you that your "
            f'manuscript "{title}" (ID: {submission_id}) cannot be accepted for publication in '
            "our journal.\n\n"
            "This decision was based on the peer review feedback, which you can view in your "
            "dashboard. While we cannot accept this manuscript, we encourage you to consider the "
            "reviewers' comments for future submissions.\n\n"
            "Thank you for considering our journal for your research.\n\n"
            f"{SIGN_OFF}"
        ),
    )


TEMPLATES: dict[SubmissionStatus, Callable[..., ComposedEmail]] = {
    SubmissionStatus.SUBMITTED: _submitted,
    SubmissionStatus.UNDER_REVIEW: _under_review,
    SubmissionStatus.REVISION_REQUIRED: _revision_required,
    SubmissionStatus.ACCEPTED: _accepted,
    SubmissionStatus.PUBLISHED: _published,
    SubmissionStatus.REJECTED: _rejected,
}


def compose(
    status: str | SubmissionStatus | None,
    title: str,
    author_name: str,
    submission_id: str,
    *,
    doi: Optional[str] = None,
    publication_date: Optional[date] = None,
    revision_days: Optional[int] = None,
) -> Optional[ComposedEmail]:
    norm = normalize_status(status)
    if norm is None:
        return None
    builder = TEMPLATES.get(SubmissionStatus(norm))
    if builder is None:
        return None
    return builder(
        title=str(title or "Untitled manuscript"),
        author_name=str(author_name or "Author"),
        submission_id=str(submission_id),
        doi=doi,
        publication_date=publication_date,
        revision_days=revision_days,
    )
