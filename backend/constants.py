ORGANIZATIONS = ["Innovate Inc.", "Tech Solutions LLC", "QuantumLeap Co."]

DEFAULT_CATEGORIES = ["Technical", "Behavioral", "Situational"]

CANDIDATE_STATUSES = ["pending", "awaiting_review", "approved"]

STATUS_PROGRESS = {"pending": 10, "awaiting_review": 60, "approved": 100}

SCORE_BUCKETS = [("0-70", 0, 70), ("71-85", 71, 85), ("86-95", 86, 95), ("96-100", 96, 100)]

CHAT_WELCOME = (
    "Welcome! I'm the SmartInterview AI Assistant. Feel free to ask me anything about this "
    "project, its architecture, or the technologies we're using."
)
CHAT_ERROR_REPLY = "Sorry, I'm having trouble connecting right now. Please try again later."

TECH_STACK = [
    {
        "title": "Backend",
        "items": [
            {"name": "FastAPI", "description": "Async Python web framework serving the REST and WebSocket API."},
            {"name": "SQLAlchemy (async) + SQLite", "description": "ORM and embedded database for candidates, templates and interviews."},
            {"name": "PyMuPDF", "description": "Renders completion certificates as PDF."},
        ],
    },
    {
        "title": "AI Layer",
        "items": [
            {"name": "Google GenAI", "description": "Language models for question generation, transcription and analysis (Live & Batch)."},
            {"name": "Response Schemas", "description": "Ensuring structured, reliable JSON output from AI models."},
        ],
    },
    {
        "title": "Realtime",
        "items": [
            {"name": "WebSockets", "description": "Bi-directional audio streaming between the browser, backend and live model."},
            {"name": "Backpressure & reconnect", "description": "Bounded audio buffering and retry with backoff when the live model drops."},
        ],
    },
    {
        "title": "Infrastructure",
        "items": [
            {"name": "Media storage budget", "description": "Recorded answers stored on disk under global and per-candidate quotas."},
            {"name": "SMTP", "description": "Invitation and decision emails."},
        ],
    },
]


def _theme(primary_bg, secondary_bg, card_bg, primary_accent, secondary_accent, text_primary, text_secondary, border):
    return {
        "--primary-bg": primary_bg,
        "--secondary-bg": secondary_bg,
        "--card-bg": card_bg,
        "--primary-accent": primary_accent,
        "--secondary-accent": secondary_accent,
        "--text-primary": text_primary,
        "--text-secondary": text_secondary,
        "--border-color": border,
    }


THEME_PRESETS = {
    "default-dark": {
        "name": "Default Dark",
        "mode": "dark",
        "colors": _theme("#0D1117", "#161B22", "#1E242C", "#A78BFA", "#8B949E", "#F0F6FC", "#C9D1D9", "#30363D"),
    },
    "default-light": {
        "name": "Default Light",
        "mode": "light",
        "colors": _theme("#F7F9FC", "#FFFFFF", "#FFFFFF", "#007BFF", "#6C757D", "#212529", "#6C757D", "#DEE2E6"),
    },
    "cyberpunk": {
        "name": "Cyberpunk",
        "mode": "dark",
        "colors": _theme("#0A0A1E", "#141432", "#1F1F47", "#FF00FF", "#00FFFF", "#EAEAEA", "#7DF9FF", "#4A2A69"),
    },
    "solaris": {
        "name": "Solaris",
        "mode": "light",
        "colors": _theme("#FFFBF5", "#FFFFFF", "#FFFFFF", "#FF7B00", "#6A8EAE", "#2C3E50", "#8492A6", "#EAEAEA"),
    },
    "dark-blue": {
        "name": "Dark Blue",
        "mode": "dark",
        "colors": _theme("#0B1220", "#111A2E", "#17223A", "#3B82F6", "#94A3B8", "#F1F5F9", "#CBD5E1", "#1E293B"),
    },
    "light-slate": {
        "name": "Light Slate",
        "mode": "light",
        "colors": _theme("#F8FAFC", "#FFFFFF", "#FFFFFF", "#475569", "#64748B", "#0F172A", "#475569", "#E2E8F0"),
    },
    "cyber-purple": {
        "name": "Cyber Purple",
        "mode": "dark",
        "colors": _theme("#120B1F", "#1B1030", "#251640", "#A855F7", "#22D3EE", "#F5F3FF", "#C4B5FD", "#3B1F5C"),
    },
}

DEFAULT_THEME = "default-dark"

SEED_CANDIDATES = [
    {
        "name": "Alex Doe",
        "father_name": "Richard Doe",
        "gender": "Male",
        "dob": "1990-05-15",
        "cnic": "12345-1234567-1",
        "email": "alex.doe@example.com",
        "status": "approved",
        "interviews": [
            {
                "company": "Innovate Inc.",
                "job_title": "Senior Frontend Developer",
                "session_state": "reviewed",
                "score": 87,
                "logs": [
                    {
                        "question": "Describe your experience with performance optimization in a large-scale React application.",
                        "answer": (
                            "In my previous project, we faced significant performance issues with a data-heavy dashboard. "
                            "I used React.memo and useMemo to prevent unnecessary re-renders, introduced code-splitting "
                            "with React.lazy and virtualized large lists with react-window. Initial load time dropped by 60%."
                        ),
                    },
                    {
                        "question": "How do you approach accessibility (a11y) in your projects?",
                        "answer": (
                            "I follow WCAG guidelines from the start: semantic HTML, focus management for keyboard "
                            "navigation, sufficient color contrast and ARIA attributes where necessary. I test with "
                            "screen readers like VoiceOver."
                        ),
                    },
                ],
            },
        ],
    },
    {
        "name": "Samantha Jones",
        "father_name": "Robert Jones",
        "gender": "Female",
        "dob": "1992-08-22",
        "cnic": "54321-7654321-2",
        "email": "samantha.jones@example.com",
        "status": "awaiting_review",
        "interviews": [
            {
                "company": "Innovate Inc.",
                "job_title": "Senior Frontend Developer",
                "job_description": (
                    "Seeking a senior frontend developer with 5+ years of experience in React, TypeScript, and modern "
                    "state management. The ideal candidate will have a strong eye for design and a passion for "
                    "performance and accessibility."
                ),
                "timer": 90,
                "categories": ["Technical", "Behavioral"],
                "session_state": "submitted",
                "score": None,
                "logs": [
                    {
                        "question": "Can you walk me through your experience with React and state management libraries like Redux or MobX?",
                        "answer": (
                            "I've worked extensively with React for about five years. I led a project using Redux for "
                            "a complex application state with lots of asynchronous actions, and I've used MobX on "
                            "smaller personal projects."
                        ),
                    },
                    {
                        "question": "Describe a challenging project you worked on. What was the problem, what was your role, and what was the outcome?",
                        "answer": (
                            "A legacy migration from Angular.js to React. I planned the phased rollout and we migrated "
                            "the entire application over six months with zero downtime."
                        ),
                    },
                ],
            },
        ],
    },
    {
        "name": "Michael Chen",
        "father_name": "David Chen",
        "gender": "Male",
        "dob": "1995-01-30",
        "cnic": "67890-1234567-3",
        "email": "michael.chen@example.com",
        "status": "pending",
        "interviews": [],
    },
    {
        "name": "Jessica Davis",
        "father_name": "William Davis",
        "gender": "Female",
        "dob": "1988-11-10",
        "cnic": "09876-5432109-4",
        "email": "jessica.davis@example.com",
        "status": "pending",
        "interviews": [],
    },
]

DEMO_CANDIDATE = {
    "name": "Demo Candidate",
    "email": "demo.candidate@example.com",
    "status": "pending",
}

DEMO_INTERVIEW = {
    "company": "Innovate Inc.",
    "job_title": "Junior Frontend Developer",
    "job_description": "Entry-level frontend role building accessible, responsive React interfaces.",
    "timer": 60,
    "categories": ["Technical", "Behavioral"],
    "questions": [
        {"question": "Tell me about your experience with React and its core principles.", "category": "Technical"},
        {"question": "Describe a challenging frontend problem you solved and how you approached it.", "category": "Behavioral"},
        {"question": "How do you ensure your web applications are responsive and accessible?", "category": "Technical"},
        {"question": "What are some best practices for optimizing web performance?", "category": "Technical"},
        {"question": "How do you stay updated with the latest trends in frontend development?", "category": "Behavioral"},
    ],
}
