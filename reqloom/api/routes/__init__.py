"""API route modules, one APIRouter each."""
