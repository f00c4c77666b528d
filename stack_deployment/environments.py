from enum import Enum

PRODUCTION_REF_TYPE = "tag"
BRANCH_REF_TYPE = "branch"
TEST_BRANCH = "main"


class Environment(str, Enum):
    DEVELOPMENT = "dev"
    TEST = "test"
    PRODUCTION = "prod"

    @classmethod
    def from_name(cls, name: str) -> "Environment":
        """
        Accepts either the short value ("dev") or the member name
        ("development"), case insensitive
        """
        normalized = name.strip().lower()
        for k in cls:
            if normalized in (k.value, k.name.lower()):
                return k
        raise ValueError(f"Unknown environment {name}")


def select_environment(ref_type: str, ref_name: str) -> Environment:
    """
    Map the git ref that triggered the workflow to the target environment.

    Args:
        ref_type: "branch" or "tag", as reported by GITHUB_REF_TYPE
        ref_name: the branch or tag name, as reported by GITHUB_REF_NAME

    Returns:
        Production for tags, Test for the main branch and Development for
        any other branch
    """
    if not ref_name:
        raise ValueError("ref_name must not be empty")
    if ref_type == PRODUCTION_REF_TYPE:
        return Environment.PRODUCTION
    if ref_type == BRANCH_REF_TYPE:
        if ref_name == TEST_BRANCH:
            return Environment.TEST
        return Environment.DEVELOPMENT
    raise ValueError(f"Unsupported ref type {ref_type}")


def stack_name(environment: Environment, stack_identifier: str) -> str:
    if not stack_identifier:
        raise ValueError("stack_identifier must not be empty")
    return f"{environment.value}-blog-{stack_identifier}"
