from __future__ import annotations

from snapsolve.pipeline.types import ProblemInfo

AUTO_LANGUAGE = "auto"

_EXTRACTION_SYSTEM_AUTO = (
    "You are a coding challenge interpreter. Analyze the screenshots of the coding "
    "problem, identify the programming language being used, and extract all relevant "
    "information. Return the information in JSON format with these fields: "
    "problem_statement (which must include the identified programming language), "
    "constraints, example_input, example_output. Just return the structured JSON "
    "without any other text."
)
_EXTRACTION_SYSTEM = (
    "You are a coding challenge interpreter. Analyze the screenshots of the coding "
    "problem and extract all relevant information. Return the information in JSON "
    "format with these fields: problem_statement, constraints, example_input, "
    "example_output. Just return the structured JSON without any other text."
)

SOLUTION_SYSTEM_PROMPT = (
    "You are an expert coding interview assistant. Provide clear, optimal solutions "
    "with detailed explanations."
)

_DEBUG_SECTIONS = """\
### Issues Identified
- List each issue as a bullet point with clear explanation

### Specific Improvements and Corrections
- List specific code changes needed as bullet points

### Optimizations
- List any performance optimizations if applicable

### Explanation of Changes Needed
Here provide a clear explanation of why the changes are needed

### Key Points
- Summary bullet points of the most important takeaways"""

_COMPLEXITY_GUIDANCE = (
    'For complexity explanations, please be thorough. For example: "Time complexity: '
    "O(n) because we iterate through the array only once. This is optimal as we need "
    'to examine each element at least once to find the solution." or "Space '
    "complexity: O(n) because in the worst case, we store all elements in the "
    'hashmap. The additional space scales linearly with the input size."'
)


def is_auto_language(language: str | None) -> bool:
    return not language or language.strip().lower() == AUTO_LANGUAGE


def extraction_system_prompt(language: str | None) -> str:
    if is_auto_language(language):
        return _EXTRACTION_SYSTEM_AUTO
    return _EXTRACTION_SYSTEM


def extraction_user_prompt(language: str | None) -> str:
    if is_auto_language(language):
        return (
            "Analyze the screenshots, identify the programming language being used or "
            "required, and extract all relevant information. Make sure to include the "
            "identified programming language in the problem statement."
        )
    return f"Preferred coding language we gonna use for this problem is {language}."


def build_solution_prompt(problem_info: ProblemInfo, language: str | None) -> str:
    fields = (
        f"PROBLEM STATEMENT:\n{problem_info.problem_statement}\n\n"
        f"CONSTRAINTS:\n{problem_info.constraints or 'No specific constraints provided.'}\n\n"
        f"EXAMPLE INPUT:\n{problem_info.example_input or 'No example input provided.'}\n\n"
        f"EXAMPLE OUTPUT:\n{problem_info.example_output or 'No example output provided.'}\n"
    )

    if is_auto_language(language):
        header = (
            "Generate a detailed solution for the following coding problem. First "
            "analyze the problem statement, constraints, and examples to identify the "
            "most appropriate programming language, then provide the solution in that "
            "language:"
        )
        code_line = (
            "1. Code: A clean, optimized implementation in the most appropriate "
            "programming language (based on the problem and examples)"
        )
        language_block = ""
    else:
        header = "Generate a detailed solution for the following coding problem:"
        code_line = f"1. Code: A clean, optimized implementation in {language}"
        language_block = f"\nLANGUAGE: {language}\n"

    return (
        f"{header}\n\n{fields}{language_block}\n"
        "I need the response in the following format:\n"
        f"{code_line}\n"
        "2. Your Thoughts: A list of key insights and reasoning behind your approach\n"
        "3. Time complexity: O(X) with a detailed explanation (at least 2 sentences)\n"
        "4. Space complexity: O(X) with a detailed explanation (at least 2 sentences)\n\n"
        f"{_COMPLEXITY_GUIDANCE}\n\n"
        "Your solution should be efficient, well-commented, and handle edge cases.\n"
    )


def debug_system_prompt(language: str | None) -> str:
    if is_auto_language(language):
        intro = (
            "You are a coding interview assistant helping debug and improve solutions. "
            "Analyze these screenshots which include either error messages, incorrect "
            "outputs, or test cases. First identify the programming language from the "
            "code, then provide detailed debugging help in that language."
        )
        code_hint = "with the appropriate language specification."
    else:
        intro = (
            "You are a coding interview assistant helping debug and improve solutions. "
            "Analyze these screenshots which include either error messages, incorrect "
            "outputs, or test cases, and provide detailed debugging help."
        )
        code_hint = f"with language specification (e.g. ```{language})."
    return (
        f"{intro}\n\n"
        "Your response MUST follow this exact structure with these section headers "
        "(use ### for headers):\n"
        f"{_DEBUG_SECTIONS}\n\n"
        f"If you include code examples, use proper markdown code blocks {code_hint}"
    )


def build_debug_prompt(problem_info: ProblemInfo, language: str | None) -> str:
    if is_auto_language(language):
        opening = (
            f'I\'m solving this coding problem: "{problem_info.problem_statement}". '
            "Analyze my code to identify the programming language being used, then help "
            "me debug or improve my solution."
        )
    else:
        opening = (
            f'I\'m solving this coding problem: "{problem_info.problem_statement}" in '
            f"{language}. I need help with debugging or improving my solution."
        )
    return (
        f"{opening} Here are screenshots of my code, the errors or test cases. Please "
        "provide a detailed analysis with:\n"
        "1. What issues you found in my code\n"
        "2. Specific improvements and corrections\n"
        "3. Any optimizations that would make the solution better\n"
        "4. A clear explanation of the changes needed"
    )
